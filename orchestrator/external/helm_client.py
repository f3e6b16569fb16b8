import json
import logging
import subprocess
from typing import List

from orchestrator.core.exceptions import RolloutFailure

logger = logging.getLogger(__name__)


class HelmClient:
    """Releases helm pilotées par le binaire `helm`"""

    def __init__(self, binary: str = "helm", timeout: int = 300):
        self.binary = binary
        self.timeout = timeout

    def upgrade_install(self, release: str, namespace: str, source) -> None:
        cmd = [
            self.binary, "upgrade", "--install", release, source.chart,
            "--namespace", namespace, "--create-namespace",
            "--values", "-",
        ]
        if source.repo_url:
            cmd += ["--repo", source.repo_url]
        if source.version:
            cmd += ["--version", source.version]

        self._run(cmd, stdin=json.dumps(source.values))
        logger.info(f"Release helm {namespace}/{release} appliquée ({source.chart})")

    def uninstall(self, release: str, namespace: str) -> None:
        self._run([self.binary, "uninstall", release, "--namespace", namespace])
        logger.info(f"Release helm {namespace}/{release} désinstallée")

    def _run(self, cmd: List[str], stdin: str = None) -> None:
        try:
            result = subprocess.run(cmd, input=stdin, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise RolloutFailure(f"Timeout helm après {self.timeout}s") from e
        except OSError as e:
            raise RolloutFailure(f"Impossible d'exécuter helm: {e}") from e

        if result.returncode != 0:
            logger.error(f"Erreur helm: {result.stderr}")
            raise RolloutFailure(f"helm a échoué: {result.stderr.strip()}")
        logger.debug(f"Sortie helm: {result.stdout}")
