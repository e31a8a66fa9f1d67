"""
Batch indexer: pull the mushaf and tafsir from equran.id, embed, and upsert.

Runs offline (scripts/index_verses.py), never concurrently with live traffic.
"""
import asyncio
import dataclasses
import time
from typing import Dict, Iterable, List, Optional

import requests

from quran_assistant.db.stores import VerseStore
from quran_assistant.ingestion.embeddings import EmbeddingService, build_embedding_text
from quran_assistant.ingestion.themes import identify_themes, summarize_tafsir
from quran_assistant.logging_config import get_logger
from quran_assistant.models import Verse

logger = get_logger(__name__)


class QuranLoader:
    """Fetches surahs from the equran.id v2 API and writes embedded verses to a VerseStore."""

    def __init__(
        self,
        verse_store: VerseStore,
        embedder: EmbeddingService,
        base_url: str = "https://equran.id/api/v2",
        request_timeout: float = 30.0,
        delay_between_surahs: float = 0.5,
        http: Optional[requests.Session] = None
    ):
        self.verse_store = verse_store
        self.embedder = embedder
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.delay_between_surahs = delay_between_surahs
        self.http = http or requests.Session()

    def _get_data(self, path: str):
        response = self.http.get(f"{self.base_url}/{path}", timeout=self.request_timeout)
        response.raise_for_status()
        return response.json()["data"]

    def fetch_surah_list(self) -> List[dict]:
        return self._get_data("surat")

    def fetch_surah(self, surah_number: int) -> dict:
        return self._get_data(f"surat/{surah_number}")

    def fetch_tafsir(self, surah_number: int) -> Dict[int, str]:
        """ayat number -> tafsir text. Empty when the tafsir endpoint fails."""
        try:
            data = self._get_data(f"tafsir/{surah_number}")
        except (requests.RequestException, KeyError, ValueError) as e:
            logger.warning(f"Could not fetch tafsir for surah {surah_number}: {e}")
            return {}
        if not data or not data.get("tafsir"):
            return {}
        return {int(t["ayat"]): t["teks"] for t in data["tafsir"]}

    def build_verses(self, surah_data: dict, tafsir_by_ayat: Dict[int, str]) -> List[Verse]:
        """Turn an API surah payload into Verse records (without embeddings)."""
        ayat_list = surah_data["ayat"]
        verses = []
        for index, ayat in enumerate(ayat_list):
            tafsir = tafsir_by_ayat.get(ayat["nomorAyat"])
            context_before = ayat_list[index - 1]["teksIndonesia"] if index > 0 else None
            context_after = ayat_list[index + 1]["teksIndonesia"] if index < len(ayat_list) - 1 else None

            verses.append(Verse(
                surah_number=surah_data["nomor"],
                ayat_number=ayat["nomorAyat"],
                arabic_text=ayat["teksArab"],
                translation=ayat["teksIndonesia"],
                surah_name_latin=surah_data["namaLatin"],
                surah_name_arabic=surah_data["nama"],
                tafsir_summary=summarize_tafsir(tafsir) if tafsir else None,
                context_before=context_before,
                context_after=context_after,
                themes=identify_themes(ayat["teksIndonesia"], tafsir),
            ))
        return verses

    async def index_surah(self, surah_number: int) -> int:
        """Fetch, embed and upsert one surah. Returns the number of verses written."""
        surah_start = time.time()
        surah_data = await asyncio.to_thread(self.fetch_surah, surah_number)
        tafsir_by_ayat = await asyncio.to_thread(self.fetch_tafsir, surah_number)

        verses = self.build_verses(surah_data, tafsir_by_ayat)
        embeddings = await asyncio.to_thread(
            self.embedder.embed_many, [build_embedding_text(v) for v in verses]
        )

        written = 0
        for verse, embedding in zip(verses, embeddings):
            if embedding is None:
                logger.warning(f"Skipping verse {verse.key}: embedding failed")
                continue
            await self.verse_store.upsert_verse(
                dataclasses.replace(verse, embedding=embedding)
            )
            written += 1

        surah_time = (time.time() - surah_start) * 1000
        logger.info(f"Indexed surah {surah_number} ({surah_data['namaLatin']}): "
                    f"{written}/{len(verses)} verses in {surah_time:.0f}ms")
        return written

    async def populate(self, surah_numbers: Optional[Iterable[int]] = None) -> int:
        """
        Index the requested surahs (all 114 by default).

        A surah that fails is logged and skipped so one bad payload does not stop the run.
        """
        if surah_numbers is None:
            surah_list = await asyncio.to_thread(self.fetch_surah_list)
            surah_numbers = [s["nomor"] for s in surah_list]
            logger.info(f"Found {len(surah_numbers)} surahs")

        total = 0
        for surah_number in surah_numbers:
            try:
                total += await self.index_surah(surah_number)
            except (requests.RequestException, KeyError, ValueError) as e:
                logger.error(f"Error processing surah {surah_number}: {e}")
                continue
            if self.delay_between_surahs:
                await asyncio.sleep(self.delay_between_surahs)

        logger.info(f"Quran data population completed: {total} verses written")
        return total
