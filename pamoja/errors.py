# pamoja/errors.py
import os

# Default language for error messages (EN by default).
LOCALE = os.getenv("ERROR_LOCALE", "en").lower()

def _(en: str, fr: str) -> str:
    return fr if LOCALE.startswith("fr") else en

class PamojaError(Exception):
    # Default to internal server error unless subclass overrides
    status_code = 500
    def __init__(self, detail: str | None = None):
        self.detail = detail or _("Internal server error.", "Erreur interne du serveur.")
        super().__init__(self.detail)

class ConfigurationError(PamojaError):
    # Secret or credential missing at call time
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Server is missing required configuration.", "Configuration du serveur incomplète."))

class EncryptionError(PamojaError):
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Failed to encrypt data.", "Échec du chiffrement des données."))

class DecryptionError(PamojaError):
    # Missing parameters, wrong key or tag verification failure
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Failed to decrypt data.", "Échec du déchiffrement des données."))

class ValidationError(PamojaError):
    status_code = 400
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Invalid request.", "Requête invalide."))

class NotAuthorized(PamojaError):
    status_code = 401
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Not authorized to access this route", "Accès non autorisé à cette route"))

class NotFoundError(PamojaError):
    status_code = 404
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Resource not found.", "Ressource introuvable."))

class ProviderError(PamojaError):
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Upstream provider error.", "Erreur du fournisseur en amont."))

class AuthError(ProviderError):
    # Invalid or missing API key
    status_code = 401
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Invalid API key.", "Clé API invalide."))

class PermissionDenied(ProviderError):
    # Caller has no access rights for this model
    status_code = 403
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Permission denied for this model.", "Permission refusée pour ce modèle."))

class BadRequestError(ProviderError):
    # Invalid payload or unsupported params
    status_code = 400
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Invalid request to provider.", "Requête invalide vers le fournisseur."))

class RateLimited(ProviderError):
    # Quota or request-per-minute cap exceeded
    status_code = 429
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Rate limit or quota exceeded.", "Limite de requêtes ou quota dépassé."))

class UpstreamTimeout(ProviderError):
    status_code = 504
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Upstream timeout.", "Délai d'attente dépassé en amont."))

class Unavailable(ProviderError):
    # Provider temporarily unavailable (maintenance, overload)
    status_code = 503
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Service unavailable.", "Service indisponible."))

class UpstreamNetwork(ProviderError):
    # Network layer failure when talking to provider
    status_code = 502
    def __init__(self, detail: str | None = None):
        super().__init__(detail or _("Network error to provider.", "Erreur réseau vers le fournisseur."))

class DeliveryError(ProviderError):
    # WhatsApp Send API answered with a non-success status
    status_code = 502
    def __init__(self, detail: str | None = None, upstream_status: int | None = None, response_body: object = None):
        self.upstream_status = upstream_status
        self.response_body = response_body
        super().__init__(detail or _("Failed to send WhatsApp message.", "Échec de l'envoi du message WhatsApp."))
