# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre la clé étrangère student_artifacts → students.

from markbook.models.student import Student, StudentArtifact  # noqa: F401
