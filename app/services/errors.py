"""
Service: errors.py
Taxonomie des erreurs du moteur de sessions.

- ValidationError          : action mal formée / référence invalide (état inchangé)
- NotFoundError            : session ou objet absent
- AlreadyExistsError       : identifiant de session déjà enregistré en mémoire
- CapacityError            : session pleine (SessionFullError)
- DuplicateConnectionError : connexion déjà liée à un joueur de la session
- PersistenceError         : échec I/O au chargement/sauvegarde d'un snapshot
- UnknownActionError       : type d'action non géré par apply_action (erreur de programmation)

Toutes dérivent de `SessionError` pour permettre un `except` unique au niveau
des handlers WebSocket; le message est destiné à être affiché tel quel au client.
"""


class SessionError(RuntimeError):
    """Erreur métier du moteur de sessions."""


class ValidationError(SessionError):
    """Entrée client invalide."""


class NotFoundError(SessionError):
    """Session (ou objet) introuvable."""


class AlreadyExistsError(SessionError):
    """Session déjà présente dans le registre."""


class CapacityError(SessionError):
    """Capacité maximale atteinte."""


class SessionFullError(CapacityError):
    """La session a atteint `maxPlayers`."""


class DuplicateConnectionError(SessionError):
    """Un joueur détient déjà cet identifiant de connexion."""


class PersistenceError(SessionError):
    """Lecture/écriture d'un snapshot impossible."""


class UnknownActionError(SessionError):
    """Type d'action inconnu arrivé jusqu'à apply_action."""
