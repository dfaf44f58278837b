"""
Index en mémoire du registre : contenu du QR code → fiche élève.

L'index est reconstruit en entier à chaque changement du registre. Les lecteurs
accèdent à un instantané remplacé d'un seul bloc : une recherche concurrente ne
voit jamais un index à moitié construit.
"""

import logging
import threading
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from markbook.schemas.student import StudentRecord

logger = logging.getLogger(__name__)


class _Snapshot(NamedTuple):
    by_code: Dict[str, StudentRecord]
    records: Tuple[StudentRecord, ...]  # triés par nom


def _sort_key(record: StudentRecord):
    return (record.name.casefold(), record.name)


class RosterIndex:
    def __init__(self, records: Iterable[StudentRecord] = ()):
        self._write_lock = threading.Lock()
        self._snapshot = _Snapshot({}, ())
        self._revisions: Dict[object, int] = {}   # dernière révision vue par id
        self.rebuild(records)

    def lookup(self, code: str) -> Optional[StudentRecord]:
        """Correspondance exacte sur le contenu du QR code. None si inconnu."""
        return self._snapshot.by_code.get(code)

    def search(self, query: str = "", scope: Optional[str] = None) -> List[StudentRecord]:
        """
        Recherche insensible à la casse sur le nom, le code élève et la classe,
        limitée au registre d'un enseignant (scope=None : tous les élèves chargés).
        Une requête vide retourne tout le registre, trié par nom.
        """
        records = self._snapshot.records
        if scope is not None:
            records = tuple(r for r in records if r.teacher_id == scope)

        needle = (query or "").strip().casefold()
        if not needle:
            return list(records)

        return [
            r for r in records
            if needle in r.name.casefold()
            or needle in r.student_code.casefold()
            or needle in r.classroom.casefold()
        ]

    def rebuild(self, records: Iterable[StudentRecord]) -> None:
        """
        Remplace tout l'index. Les fiches inactives sont ignorées.
        Une fiche plus ancienne que la version déjà en cache (lecture faite avant
        une liaison concurrente) est remplacée par la version en cache.
        """
        incoming = list(records)
        with self._write_lock:
            cached = {r.id: r for r in self._snapshot.records}
            fresh = []
            for record in incoming:
                if self._is_stale(record):
                    record = cached.get(record.id)
                    if record is None:
                        continue
                else:
                    self._revisions[record.id] = record.revision
                if record.is_active:
                    fresh.append(record)
            self._snapshot = self._build(fresh)

        logger.debug("Index du registre reconstruit : %d élèves", len(self._snapshot.records))

    def apply(self, record: StudentRecord) -> None:
        """
        Remplace la fiche (même id) par sa nouvelle version puis reconstruit l'index.
        À n'appeler qu'après un commit réussi. Une version plus ancienne que celle
        déjà appliquée est ignorée, quel que soit l'ordre d'arrivée.
        """
        with self._write_lock:
            if self._is_stale(record):
                logger.debug("Version %d de la fiche %s ignorée (déjà plus récente)", record.revision, record.id)
                return
            self._revisions[record.id] = record.revision
            others = [r for r in self._snapshot.records if r.id != record.id]
            self._snapshot = self._build(others + ([record] if record.is_active else []))

    def _is_stale(self, record: StudentRecord) -> bool:
        if record.id is None:
            return False
        return record.revision < self._revisions.get(record.id, record.revision)

    @staticmethod
    def _build(records: List[StudentRecord]) -> _Snapshot:
        by_code: Dict[str, StudentRecord] = {}
        for record in sorted(records, key=_sort_key):
            if record.scannable_code in by_code:
                logger.warning("QR code en double dans le registre, ignoré : %s", record.scannable_code)
                continue
            by_code[record.scannable_code] = record
        return _Snapshot(by_code, tuple(by_code.values()))

    def get(self, student_id) -> Optional[StudentRecord]:
        for record in self._snapshot.records:
            if record.id == student_id:
                return record
        return None

    def find_by_locator(self, locator: str) -> Optional[StudentRecord]:
        """Retrouve l'élève propriétaire d'une copie."""
        for record in self._snapshot.records:
            if locator in record.artifact_locators:
                return record
        return None

    @property
    def records(self) -> List[StudentRecord]:
        return list(self._snapshot.records)

    def __len__(self) -> int:
        return len(self._snapshot.records)
