"""Taxonomie des erreurs de l'orchestrateur.

Les erreurs de validation et de conflit remontent de façon synchrone à l'appelant.
Les échecs de build et de rollout ne remontent jamais : ils sont enregistrés comme
statut ERROR sur le déploiement concerné.
"""


class OrchestratorError(Exception):
    """Erreur de base"""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(OrchestratorError):
    """Configuration invalide ou contradictoire, rejetée avant toute création"""

    status_code = 400


class ConflictError(ValidationError):
    """Un sous-domaine ou namespace a été réclamé par une autre app entre-temps"""

    status_code = 409
    retryable = True


class NotFoundError(OrchestratorError):
    status_code = 404


class AppNotFoundError(NotFoundError):
    def __init__(self, app_id=None):
        super().__init__(f"App {app_id} introuvable" if app_id is not None else "App introuvable")


class DeploymentNotFoundError(NotFoundError):
    def __init__(self, deployment_id=None):
        super().__init__(
            f"Déploiement {deployment_id} introuvable" if deployment_id is not None else "Déploiement introuvable"
        )


class PermissionDeniedError(OrchestratorError):
    status_code = 403


class InvalidTransitionError(OrchestratorError):
    """Transition d'état interdite par la machine à états"""

    status_code = 409

    def __init__(self, current, target):
        super().__init__(f"Transition interdite: {current} -> {target}")
        self.current = current
        self.target = target


class AuthenticationError(OrchestratorError):
    """Jeton absent, expiré ou identifiants incorrects"""

    status_code = 401


class WebhookSignatureError(AuthenticationError):
    pass


class BuildFailure(OrchestratorError):
    """Échec du build, enregistré sur le déploiement"""


class RolloutFailure(OrchestratorError):
    """Échec du rollout (crash loop, OOM, image introuvable...)"""


class TransientObservationError(OrchestratorError):
    """La plateforme d'orchestration est injoignable : on réessaie plus tard"""
