"""
Pod Exec - run a command in a pod container and stream its output.

Speaks the Kubernetes exec websocket protocol (v4.channel.k8s.io): every
binary frame starts with a channel byte, 1 for stdout, 2 for stderr and 3
for the final status object.
"""

import json
import logging
import ssl
from typing import BinaryIO, Dict, List, Optional, Sequence, Tuple

import aiohttp

from reconcilekit.config import ExecConfig
from reconcilekit.objects import ObjectKey

logger = logging.getLogger(__name__)

EXEC_PROTOCOL = "v4.channel.k8s.io"

STDOUT_CHANNEL = 1
STDERR_CHANNEL = 2
ERROR_CHANNEL = 3


class ExecError(Exception):
    """The exec stream was rejected, dropped, or the command failed."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


def _exit_code(status: Dict) -> Optional[int]:
    for cause in (status.get("details") or {}).get("causes") or []:
        if cause.get("reason") == "ExitCode":
            try:
                return int(cause.get("message"))
            except (TypeError, ValueError):
                return None
    return None


class PodExecutor:
    """Executes one command in one pod container."""

    def __init__(
        self,
        config: ExecConfig,
        pod: ObjectKey,
        command: Sequence[str],
        container: Optional[str] = None,
    ):
        if not command:
            raise ValueError("command must not be empty")
        self.config = config
        self.pod = pod
        self.command = list(command)
        self.container = container

    @property
    def url(self) -> str:
        base = self.config.api_url.rstrip("/")
        return (
            f"{base}/api/v1/namespaces/{self.pod.namespace}"
            f"/pods/{self.pod.name}/exec"
        )

    def _params(self) -> List[Tuple[str, str]]:
        params = [("command", part) for part in self.command]
        params += [("stdin", "false"), ("stdout", "true"), ("stderr", "true")]
        params.append(("tty", "false"))
        if self.container:
            params.append(("container", self.container))
        return params

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    def _ssl(self):
        if not self.config.verify_ssl:
            return False
        if self.config.ca_file:
            return ssl.create_default_context(cafile=self.config.ca_file)
        return True

    async def execute(self, stdout: BinaryIO, stderr: BinaryIO) -> None:
        """
        Run the command, writing its output to stdout and stderr.

        Raises:
            ExecError: If the API server rejects the stream, the connection
                drops before a status arrives, or the command fails.
        """
        logger.debug(f"Exec {self.command} in pod {self.pod} container {self.container}")
        status = None

        try:
            async with aiohttp.ClientSession() as session:
                async with session.ws_connect(
                    self.url,
                    params=self._params(),
                    headers=self._headers(),
                    protocols=(EXEC_PROTOCOL,),
                    ssl=self._ssl(),
                ) as ws:
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.BINARY:
                            status = self._dispatch(msg.data, stdout, stderr) or status
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            raise ExecError(
                                f"Exec stream for pod {self.pod} failed: "
                                f"{ws.exception()}"
                            )
        except aiohttp.WSServerHandshakeError as e:
            raise ExecError(
                f"Exec in pod {self.pod} rejected: HTTP {e.status} {e.message}"
            ) from e
        except aiohttp.ClientError as e:
            raise ExecError(f"Exec connection to pod {self.pod} failed: {e}") from e

        if status is None:
            raise ExecError(f"Exec stream for pod {self.pod} closed without status")

        if status.get("status") != "Success":
            raise ExecError(
                status.get("message") or f"Exec in pod {self.pod} failed",
                exit_code=_exit_code(status),
            )

    def _dispatch(
        self, frame: bytes, stdout: BinaryIO, stderr: BinaryIO
    ) -> Optional[Dict]:
        if not frame:
            return None
        channel, payload = frame[0], frame[1:]

        if channel == STDOUT_CHANNEL:
            stdout.write(payload)
        elif channel == STDERR_CHANNEL:
            stderr.write(payload)
        elif channel == ERROR_CHANNEL:
            try:
                return json.loads(payload.decode("utf-8"))
            except ValueError as e:
                raise ExecError(f"Malformed exec status from pod {self.pod}") from e
        return None
