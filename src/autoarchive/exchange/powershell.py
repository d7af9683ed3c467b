"""Long-lived PowerShell session.

Runs commands one at a time inside a single ``pwsh`` process, so that state
created by one command (an Exchange Online connection in particular) is
still there for the next one.

Each command is wrapped in ``try/catch`` and followed by a unique end
marker that reports ``OK`` or the error message, e.g.::

    try { Get-Mailbox ...; Write-Output '<marker>:OK' }
    catch { Write-Output ('<marker>:ERROR:' + $_.Exception.Message) }

Everything printed before the marker is the command's output.
"""

import json
import logging
import subprocess
import uuid

logger = logging.getLogger(__name__)

MARKER_PREFIX = "__AUTOARCHIVE_END__"
CLOSE_TIMEOUT_SECONDS = 30


class PowerShellError(RuntimeError):
    """A PowerShell command failed or the session is unusable."""


def parse_json_output(output: str) -> dict | list:
    """Parse JSON written by ConvertTo-Json.

    Args:
        output: Raw text collected from the session

    Returns:
        Parsed JSON, ``{}`` for empty output, or ``{"raw": output}`` when
        no JSON can be found
    """
    output = output.strip()
    if not output:
        return {}

    try:
        return json.loads(output)
    except json.JSONDecodeError:
        pass

    # Banner or warning text may surround the JSON
    starts = [i for i in (output.find("{"), output.find("[")) if i != -1]
    if starts:
        json_start = min(starts)
        closer = "}" if output[json_start] == "{" else "]"
        json_end = output.rfind(closer)
        if json_end > json_start:
            try:
                return json.loads(output[json_start : json_end + 1])
            except json.JSONDecodeError:
                pass
        logger.warning(f"Failed to parse JSON output: {output[:200]}")

    return {"raw": output}


class PowerShellSession:
    """A persistent ``pwsh`` process driven over stdin/stdout."""

    def __init__(
        self,
        executable: str = "pwsh",
        modules: tuple[str, ...] = ("ExchangeOnlineManagement",),
    ) -> None:
        """Initialize the session (the process starts on first use).

        Args:
            executable: PowerShell 7+ executable name or path
            modules: Modules imported right after the process starts
        """
        self.executable = executable
        self.modules = modules
        self._process: subprocess.Popen[str] | None = None

    def __enter__(self) -> "PowerShellSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_running(self) -> bool:
        """Check if the pwsh process is alive."""
        return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        """Start pwsh and prepare it for Exchange commands.

        Raises:
            PowerShellError: If pwsh is missing or a module fails to import
        """
        if self.is_running:
            return

        logger.debug(f"Starting PowerShell session ({self.executable})")
        try:
            self._process = subprocess.Popen(  # noqa: S603
                [self.executable, "-NoProfile", "-NonInteractive", "-Command", "-"],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError as e:
            raise PowerShellError(
                f"PowerShell ({self.executable}) not found. Install PowerShell 7+."
            ) from e

        self.run("$ErrorActionPreference = 'Stop'")
        self.run("$ProgressPreference = 'SilentlyContinue'")
        for module in self.modules:
            self.run(f"Import-Module {module} -ErrorAction Stop")

    def run(self, command: str, echo: bool = False) -> str:
        """Run a single-line command and return its output.

        Args:
            command: PowerShell statement(s) on one line
            echo: If True, log each output line as it arrives (sign-in prompts)

        Returns:
            Text written before the end marker

        Raises:
            PowerShellError: If the command throws or the process exits
        """
        if not self.is_running:
            self.start()

        process = self._process
        marker = f"{MARKER_PREFIX}{uuid.uuid4().hex}"
        script = (
            f"try {{ {command}; Write-Output '{marker}:OK' }} "
            f"catch {{ Write-Output ('{marker}:ERROR:' + "
            f"($_.Exception.Message -replace '\\s+', ' ')) }}"
        )

        # Only the cmdlet name is logged; connect commands carry secrets
        logger.debug(f"Executing: {command.split(' ', 1)[0]}")
        try:
            # Trailing blank line terminates the statement in stdin mode
            process.stdin.write(script + "\n\n")
            process.stdin.flush()
        except (BrokenPipeError, OSError) as e:
            raise PowerShellError(f"PowerShell session is not accepting commands: {e}") from e

        lines: list[str] = []
        for line in iter(process.stdout.readline, ""):
            line = line.rstrip("\r\n")
            if line.startswith(marker):
                status = line[len(marker) + 1 :]
                if status.startswith("ERROR:"):
                    message = status[len("ERROR:") :].strip()
                    raise PowerShellError(message or "PowerShell command failed")
                return "\n".join(lines)
            if echo and line.strip():
                logger.info(line)
            lines.append(line)

        tail = " ".join(lines)[-200:]
        raise PowerShellError(f"PowerShell session ended unexpectedly: {tail}")

    def close(self) -> None:
        """Exit pwsh, killing it if it does not stop in time."""
        if self._process is None:
            return

        process, self._process = self._process, None
        try:
            process.communicate("exit\n", timeout=CLOSE_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("PowerShell session did not exit, killing it")
            process.kill()
            process.communicate()
        logger.debug("PowerShell session closed")
