from typing import Any, Dict, List

from cryptography.fernet import Fernet, InvalidToken

from orchestrator.core.exceptions import OrchestratorError


class SecretBox:
    """Chiffre au repos les valeurs des variables d'environnement sensibles"""

    def __init__(self, key: str):
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise OrchestratorError("Impossible de déchiffrer une variable sensible") from e

    def seal_env(self, env: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {**var, "value": self.encrypt(var["value"])} if var.get("is_sensitive") else dict(var)
            for var in env
        ]

    def open_env(self, env: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {**var, "value": self.decrypt(var["value"])} if var.get("is_sensitive") else dict(var)
            for var in env
        ]

    def seal_config(self, config) -> Dict[str, Any]:
        """Snapshot JSON d'une DeploymentConfig avec les valeurs sensibles chiffrées"""
        data = config.model_dump(mode="json")
        data["env"] = self.seal_env(data.get("env", []))
        return data

    def open_config(self, data: Dict[str, Any]):
        from orchestrator.api.schemas.config import DeploymentConfig

        opened = dict(data)
        opened["env"] = self.open_env(data.get("env", []))
        return DeploymentConfig.model_validate(opened)
