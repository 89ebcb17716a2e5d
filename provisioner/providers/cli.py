import json
import subprocess
from typing import Any, List, Optional, Sequence, Tuple

from provisioner.core.exceptions import ProviderCommandError
from provisioner.core.logging import get_provider_logger


def run_command(cmd: Sequence[str], input_text: Optional[str] = None) -> Tuple[bool, str]:
    """Run an external command and return success status and output."""
    try:
        result = subprocess.run(
            list(cmd),
            input=input_text,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode == 0:
            return True, result.stdout.strip()
        return False, result.stderr.strip()
    except FileNotFoundError:
        return False, f"{cmd[0]} not found. Please install it first."
    except OSError as e:
        return False, str(e)


class CommandLineTool:
    """Thin wrapper around one provider CLI.

    Every failed invocation raises ``ProviderCommandError``. Secrets are
    always passed on stdin, never as arguments, so they do not show up in
    the process list or in logged command lines.
    """

    name = "cli"

    def __init__(self, executable: str):
        self.executable = executable
        self.logger = get_provider_logger(self.name)

    def base_args(self) -> List[str]:
        return [self.executable]

    def run(self, args: Sequence[str], input_text: Optional[str] = None) -> str:
        cmd = self.base_args() + list(args)
        self.logger.debug("Running command", command=" ".join(cmd[:4]))
        success, output = run_command(cmd, input_text)
        if not success:
            self.logger.warning("Command failed", command=" ".join(cmd[:4]), stderr=output)
            raise ProviderCommandError(
                f"{self.name} {' '.join(args[:2])} failed: {output}",
                tool=self.name,
                details={"args": list(args[:3]), "stderr": output},
            )
        return output


class AwsCli(CommandLineTool):
    """The ``aws`` command line interface bound to one region."""

    name = "aws"

    def __init__(self, executable: str = "aws", region: Optional[str] = None):
        super().__init__(executable)
        self.region = region

    def base_args(self) -> List[str]:
        args = [self.executable]
        if self.region:
            args += ["--region", self.region]
        return args

    def call(self, service: str, operation: str, *args: str) -> Any:
        """Invoke an API operation and parse its JSON response."""
        output = self.run([service, operation, *args, "--output", "json"])
        if not output:
            return {}
        try:
            return json.loads(output)
        except json.JSONDecodeError:
            raise ProviderCommandError(
                f"aws {service} {operation} returned invalid JSON",
                tool=self.name,
                details={"stdout": output[:200]},
            )

    def call_with_input(self, service: str, operation: str, payload: dict) -> Any:
        """Invoke an operation with a JSON request read from stdin."""
        output = self.run(
            [service, operation, "--cli-input-json", "file:///dev/stdin", "--output", "json"],
            input_text=json.dumps(payload),
        )
        if not output:
            return {}
        try:
            return json.loads(output)
        except json.JSONDecodeError:
            raise ProviderCommandError(
                f"aws {service} {operation} returned invalid JSON",
                tool=self.name,
                details={"stdout": output[:200]},
            )

    def wait(self, service: str, waiter: str, *args: str) -> None:
        """Block until a built-in waiter reports the target condition."""
        self.logger.info("Waiting for resource", service=service, waiter=waiter)
        self.run([service, "wait", waiter, *args])

    def caller_identity(self) -> dict:
        return self.call("sts", "get-caller-identity")


class DockerCli(CommandLineTool):
    """The ``docker`` command line interface."""

    name = "docker"

    def __init__(self, executable: str = "docker"):
        super().__init__(executable)
