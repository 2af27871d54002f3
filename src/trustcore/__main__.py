"""CLI entrypoint for trustcore."""

import trustcore.cli.audit_cmd  # noqa: F401
import trustcore.cli.config_cmd  # noqa: F401
import trustcore.cli.keys_cmd  # noqa: F401
import trustcore.cli.seal_cmd  # noqa: F401
from trustcore.cli.main import cli


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
