#!/usr/bin/env python3
"""
SonarQube AWS provisioner command line.

Usage:
    # Plan, confirm and deploy (default command)
    sonar-provisioner
    sonar-provisioner deploy

    # Regenerate the database password on the next deploy
    sonar-provisioner deploy --replace random_password.db

    # Show the plan without changing anything
    sonar-provisioner plan

    # Tear everything down (asks for its own confirmation)
    sonar-provisioner destroy

    # Print the outputs of the last deploy
    sonar-provisioner output

Requirements:
    - AWS CLI installed and configured (aws configure)
    - Docker installed and running
"""

import argparse
import json
import sys
from typing import Callable, List, Optional

from pydantic import ValidationError

from provisioner import __version__
from provisioner.core.config import Settings
from provisioner.core.exceptions import (
    ApplyFailedError,
    MissingToolError,
    OperatorAbortedError,
    ProvisionerError,
    StateLockedError,
    UnauthenticatedError,
)
from provisioner.core.logging import configure_logging, get_logger
from provisioner.providers.cli import AwsCli
from provisioner.providers.docker import build_registry
from provisioner.services.console import (
    Colors,
    colored,
    outputs_as_dict,
    render_outputs,
    render_statuses,
)
from provisioner.services.driver import ProvisioningDriver
from provisioner.services.state_store import StateStore
from provisioner.stacks.sonarqube import build_sonarqube_graph, variable_values_from_settings

logger = get_logger("main")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_LOCKED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sonar-provisioner",
        description="Provision a self-hosted SonarQube on AWS",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to environment file (default: .env)",
    )
    subparsers = parser.add_subparsers(dest="command")

    deploy = subparsers.add_parser("deploy", help="Plan, confirm and apply (default)")
    deploy.add_argument(
        "--replace",
        action="append",
        default=[],
        metavar="ADDRESS",
        help="Force replacement of a resource, e.g. random_password.db",
    )

    plan = subparsers.add_parser("plan", help="Show the changes a deploy would make")
    plan.add_argument("--replace", action="append", default=[], metavar="ADDRESS")
    plan.add_argument("--destroy", action="store_true", help="Show the destroy plan instead")

    subparsers.add_parser("destroy", help="Delete every provisioned resource")

    output = subparsers.add_parser("output", help="Print outputs of the last deploy")
    output.add_argument("--json", action="store_true", help="Print outputs as JSON")

    parser.set_defaults(command="deploy", replace=[])
    return parser


def build_driver(
    config: Settings,
    input_func: Callable[[str], str] = input,
    echo: Callable[[str], None] = print,
) -> ProvisioningDriver:
    aws = AwsCli(config.AWS_CLI, region=config.AWS_REGION)
    return ProvisioningDriver(
        graph=build_sonarqube_graph(config),
        registry=build_registry(config),
        store=StateStore(config.STATE_PATH),
        variables=variable_values_from_settings(config),
        required_tools=config.REQUIRED_TOOLS,
        identity_provider=aws.caller_identity,
        input_func=input_func,
        echo=echo,
    )


def print_header(title: str, config: Settings) -> None:
    print()
    print("=" * 50)
    print(colored(title, Colors.BOLD))
    print("=" * 50)
    print(f"Deployment: {colored(config.name_prefix, Colors.BLUE)}")
    print(f"Region:     {colored(config.AWS_REGION, Colors.BLUE)}")
    print()


def print_deploy_result(driver: ProvisioningDriver) -> None:
    outputs = driver.outputs().outputs
    print()
    print(colored("✅ Infrastructure deployed!", Colors.GREEN))
    if "sonarqube_url" in outputs:
        print(f"🌐 SonarQube URL: {colored(outputs['sonarqube_url'].value, Colors.BLUE)}")
    print()
    print("🔐 Database credentials are stored securely in AWS Secrets Manager")
    if "database_password_command" in outputs:
        print("📋 To retrieve database password:")
        print(f"   {outputs['database_password_command'].value}")
    print()
    print("⏳ Please wait 5-10 minutes for SonarQube to fully start up.")
    print("🔑 Default SonarQube login: admin/admin")


def run_command(args: argparse.Namespace, config: Settings) -> int:
    driver = build_driver(config)

    if args.command == "output":
        outputs = driver.outputs().outputs
        if args.json:
            print(json.dumps(outputs_as_dict(outputs), indent=2))
        else:
            print(render_outputs(outputs))
        return EXIT_OK

    if args.command == "plan":
        print_header("SonarQube Deployment Plan", config)
        driver.preview(replace=args.replace, destroy=args.destroy)
        return EXIT_OK

    if args.command == "destroy":
        print_header("SonarQube Teardown", config)
        report = driver.destroy()
        if report is not None:
            print()
            print(colored("All resources destroyed ✓", Colors.GREEN))
        return EXIT_OK

    print_header("🚀 Starting SonarQube AWS Deployment with ECR...", config)
    report = driver.deploy(replace=args.replace)
    if report is not None or driver.outputs().outputs:
        print_deploy_result(driver)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = Settings(_env_file=args.env_file)
    except ValidationError as e:
        print(colored("❌ Invalid configuration:", Colors.RED))
        for error in e.errors(include_url=False, include_input=False):
            field = ".".join(str(part) for part in error["loc"])
            print(colored(f"  {field}: {error['msg']}", Colors.RED))
        return EXIT_FAILED

    configure_logging(config)

    try:
        return run_command(args, config)
    except OperatorAbortedError as e:
        print(colored(f"❌ {e.message}", Colors.YELLOW))
        return EXIT_OK
    except StateLockedError as e:
        print(colored(f"❌ {e.message}", Colors.RED))
        print("If no other run is active, remove the lock file:")
        print(f"  rm {e.details['lock_path']}")
        return EXIT_LOCKED
    except MissingToolError as e:
        print(colored(f"❌ {e.message}", Colors.RED))
        return EXIT_FAILED
    except UnauthenticatedError as e:
        print(colored(f"❌ {e.message}", Colors.RED))
        return EXIT_FAILED
    except ApplyFailedError as e:
        print()
        print(colored(f"❌ {e.message}", Colors.RED))
        print(render_statuses(e.statuses))
        print()
        print("State has been saved. Fix the problem and run the deployment again.")
        return EXIT_FAILED
    except ProvisionerError as e:
        logger.error("Provisioning failed", error_code=e.error_code, details=e.details)
        print(colored(f"❌ {e.message}", Colors.RED))
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("\nCancelled.")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
