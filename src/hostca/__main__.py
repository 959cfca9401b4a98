"""Allow ``python -m hostca -c config.yaml ...``."""

from hostca.cli.main import main

main()
