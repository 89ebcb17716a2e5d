#!/usr/bin/env python3
"""
Deploy SonarQube to AWS.

Checks that aws and docker are installed and that the AWS CLI is
configured, shows the deployment plan, asks for confirmation and applies
it. Equivalent to ``sonar-provisioner deploy``.

Usage:
    # Default: read from .env
    uv run python scripts/deploy.py

    # Specify different env file
    uv run python scripts/deploy.py --env-file .env.production

    # Preview only
    uv run python scripts/deploy.py plan

    # Tear down
    uv run python scripts/deploy.py destroy
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv  # noqa: E402

env_path = project_root / ".env"
if env_path.exists():
    load_dotenv(env_path)

from provisioner.main import main  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())
