import pulumi
from awseks import EKSStackBuilder
from config import DEFAULT_LAYOUT, load_layout, load_stack_config


def main():
    stack_settings = pulumi.Config()
    layout_path = stack_settings.get("layout") or DEFAULT_LAYOUT

    try:
        layout = load_layout(layout_path)
        stack_config = load_stack_config(layout, stack_settings)
    except Exception as e:
        pulumi.log.error(f"Failed to load configuration from '{layout_path}': {e}")
        raise

    builder = EKSStackBuilder(stack_config)
    try:
        builder.build()
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    for name, value in builder.outputs.items():
        pulumi.export(name, value)

if __name__ == "__main__":
    main()
