"""
Stockage binaire des copies d'évaluation.

Le localisateur retourné par put() est opaque pour le reste de l'application :
seul le stockage qui l'a émis sait l'interpréter.

Politique de suppression : supprimer une copie déjà absente est un succès
(idempotent). Un localisateur invalide ou un refus du système de fichiers
lève StorageDeleteError.
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Callable, Optional, Protocol

from markbook.config import Settings, settings as default_settings
from markbook.errors import StorageDeleteError, StorageReadError, StorageWriteError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class ArtifactStore(Protocol):
    """Contrat consommé par l'orchestrateur et le service des copies."""

    async def put(self, data: bytes, destination_hint: str,
                  on_progress: Optional[ProgressCallback] = None) -> str: ...

    async def delete(self, locator: str) -> None: ...

    async def get(self, locator: str) -> bytes: ...

    async def size(self, locator: str) -> int: ...


class LocalArtifactStore:
    """
    Stockage sur un répertoire local (STORAGE_ROOT).

    L'écriture passe par un fichier temporaire renommé atomiquement : une
    écriture partielle n'est jamais visible. La progression est rapportée après
    chaque bloc, sur la boucle d'événements de l'appelant.
    """

    def __init__(self, root: Optional[str] = None, config: Settings = default_settings):
        self.root = Path(root or config.STORAGE_ROOT).resolve()
        self.chunk_size = config.STORAGE_CHUNK_SIZE
        self.max_download_bytes = config.MAX_DOWNLOAD_BYTES

    def _resolve(self, locator: str) -> Optional[Path]:
        """Chemin absolu du localisateur, ou None s'il sort du répertoire racine."""
        if not locator or locator.startswith("/"):
            return None
        path = (self.root / locator).resolve()
        if self.root not in path.parents:
            return None
        return path

    async def put(self, data: bytes, destination_hint: str,
                  on_progress: Optional[ProgressCallback] = None) -> str:
        target = self._resolve(destination_hint)
        if target is None:
            raise StorageWriteError(f"Destination de stockage invalide : {destination_hint}")
        if target.exists():
            raise StorageWriteError(f"Une copie existe déjà à cet emplacement : {destination_hint}")

        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.part")
        total = len(data)
        try:
            await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
            handle = await asyncio.to_thread(open, tmp, "wb")
            try:
                written = 0
                for offset in range(0, total, self.chunk_size):
                    chunk = data[offset:offset + self.chunk_size]
                    await asyncio.to_thread(handle.write, chunk)
                    written += len(chunk)
                    if on_progress:
                        on_progress(written / total)
            finally:
                await asyncio.to_thread(handle.close)
            await asyncio.to_thread(os.replace, tmp, target)
        except OSError as exc:
            await asyncio.to_thread(tmp.unlink, missing_ok=True)
            logger.error("Écriture de %s impossible : %s", destination_hint, exc)
            raise StorageWriteError(f"Échec de l'enregistrement de la copie : {exc}") from exc

        if on_progress and total == 0:
            on_progress(1.0)

        locator = target.relative_to(self.root).as_posix()
        logger.info("Copie enregistrée : %s (%d octets)", locator, total)
        return locator

    async def delete(self, locator: str) -> None:
        path = self._resolve(locator)
        if path is None:
            raise StorageDeleteError(f"Localisateur invalide : {locator}")
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            logger.debug("Copie déjà supprimée : %s", locator)
            return
        except OSError as exc:
            logger.error("Suppression de %s refusée : %s", locator, exc)
            raise StorageDeleteError(f"Impossible de supprimer la copie : {exc}") from exc
        logger.info("Copie supprimée : %s", locator)

    async def get(self, locator: str) -> bytes:
        path = self._resolve(locator)
        if path is None:
            raise StorageReadError(f"Localisateur invalide : {locator}")

        size = await self.size(locator)
        if size > self.max_download_bytes:
            raise StorageReadError(
                f"La copie dépasse la taille maximale de "
                f"{self.max_download_bytes // (1024 * 1024)} Mo."
            )
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageReadError(f"Impossible de lire la copie : {exc}") from exc

    async def size(self, locator: str) -> int:
        path = self._resolve(locator)
        if path is None:
            raise StorageReadError(f"Localisateur invalide : {locator}")
        try:
            stat = await asyncio.to_thread(path.stat)
        except FileNotFoundError as exc:
            raise StorageReadError(f"Copie introuvable : {locator}") from exc
        except OSError as exc:
            raise StorageReadError(f"Impossible de lire la copie : {exc}") from exc
        return stat.st_size
