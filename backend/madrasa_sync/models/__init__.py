# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant l'appel à Base.metadata.create_all (init_db).

from madrasa_sync.models.local_entry import LocalEntry  # noqa: F401
