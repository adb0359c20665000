"""Pairwise relevance scoring with a cross-encoder model.

The scorer is constructed explicitly and owned by whoever runs a matching
operation. Loading is single-flight: concurrent callers wait for the one load
in progress. Callers bound peak memory with ``session()`` which always unloads.
"""

from __future__ import annotations

import logging
import math
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Protocol, Sequence

from config.settings import (
    LEARNED_BATCH_SIZE,
    LEARNED_MATCH_THRESHOLD,
    LEARNED_MAX_LENGTH,
    LEARNED_MODEL_NAME,
)
from engine.errors import ModelLoadError
from engine.title_normalization import levenshtein_similarity

logger = logging.getLogger(__name__)

STATE_UNLOADED = "unloaded"
STATE_LOADING = "loading"
STATE_READY = "ready"
STATE_FAILED = "failed"

CLASS_MATCHED = "matched"
CLASS_UNCERTAIN = "uncertain"
CLASS_UNKNOWN = "unknown"

_AKA_RE = re.compile(r"\s+(aka|aka\.|also known as)\s.*$", re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ScoringQuery:
    title: str
    performer: str | None = None
    studio: str | None = None
    date: str | None = None


@dataclass(frozen=True)
class ScoringCandidate:
    id: str
    title: str
    date: str | None = None
    studio: str | None = None
    performers: tuple[str, ...] = ()


@dataclass(frozen=True)
class LearnedMatch:
    candidate: ScoringCandidate
    score: float
    index: int


class _PairModel(Protocol):
    def predict(self, pairs: Sequence[tuple[str, str]]) -> list[float]:
        """Return one raw relevance logit per (query, candidate) pair."""


class HuggingFaceCrossEncoder:
    """Cross-encoder backed by ``transformers`` sequence classification."""

    def __init__(
        self,
        model_name: str = LEARNED_MODEL_NAME,
        *,
        cache_dir: str | None = None,
        max_length: int = LEARNED_MAX_LENGTH,
    ) -> None:
        import torch
        from transformers import AutoModelForSequenceClassification, AutoTokenizer

        self._torch = torch
        self.max_length = max_length
        self.tokenizer = AutoTokenizer.from_pretrained(model_name, cache_dir=cache_dir)
        self.model = AutoModelForSequenceClassification.from_pretrained(model_name, cache_dir=cache_dir)
        self.model.eval()

    def predict(self, pairs: Sequence[tuple[str, str]]) -> list[float]:
        if not pairs:
            return []
        queries = [query for query, _ in pairs]
        candidates = [candidate for _, candidate in pairs]
        inputs = self.tokenizer(
            queries,
            candidates,
            padding=True,
            truncation=True,
            max_length=self.max_length,
            return_tensors="pt",
        )
        with self._torch.no_grad():
            logits = self.model(**inputs).logits
        return [float(value) for value in logits[:, 0].tolist()]


def sigmoid(value: float) -> float:
    if value >= 0:
        return 1.0 / (1.0 + math.exp(-value))
    exp_value = math.exp(value)
    return exp_value / (1.0 + exp_value)


def build_query_text(query: ScoringQuery) -> str:
    parts = []
    if query.performer:
        parts.append(f"Performer: {query.performer}")
    if query.studio:
        parts.append(f"Studio: {query.studio}")
    if query.date:
        parts.append(f"Date: {query.date}")
    parts.append(f"Title: {query.title}")
    return " | ".join(parts)


def build_candidate_text(candidate: ScoringCandidate) -> str:
    parts = []
    if candidate.performers:
        parts.append(f"Performer: {', '.join(candidate.performers)}")
    if candidate.studio:
        parts.append(f"Studio: {candidate.studio}")
    if candidate.date:
        parts.append(f"Date: {candidate.date}")
    parts.append(f"Title: {candidate.title}")
    return " | ".join(parts)


def normalize_performer_name(name: str) -> str:
    text = str(name or "").lower().strip()
    text = _AKA_RE.sub("", text)
    text = _NON_WORD_RE.sub("", text)
    return _WS_RE.sub(" ", text)


def performer_similarity(first: str, second: str) -> float:
    """Name similarity where differing first names cap the score."""
    if first == second:
        return 1.0
    first_words = [word for word in first.split(" ") if word]
    second_words = [word for word in second.split(" ") if word]
    if not first_words or not second_words:
        return levenshtein_similarity(first, second)

    first_name = first_words[0].lower()
    other_first_name = second_words[0].lower()
    if first_name != other_first_name:
        full_similarity = levenshtein_similarity(first, second)
        if len(first_name) > 3 and levenshtein_similarity(first_name, other_first_name) > 0.9:
            return full_similarity * 0.5
        return full_similarity * 0.2

    if first in second or second in first:
        longer = first if len(first) > len(second) else second
        if len(longer) <= 15:
            return 0.9

    matching_words = 1
    for word in first_words[1:]:
        if any(word.lower() == other.lower() for other in second_words[1:]):
            matching_words += 1
    word_overlap = matching_words / max(len(first_words), len(second_words))
    return word_overlap * 0.6 + levenshtein_similarity(first, second) * 0.4


def performer_penalty(query_performer: str, candidate_performers: Sequence[str]) -> float:
    """Penalty in [0, 0.95]; zero when a candidate performer matches the query name."""
    normalized_query = normalize_performer_name(query_performer)
    query_words = [word for word in normalized_query.split(" ") if len(word) > 2]
    main_name = " ".join(query_words[:2])
    if len(main_name) < 3:
        main_name = query_words[0] if query_words else normalized_query

    best = 0.0
    for performer in candidate_performers:
        best = max(best, performer_similarity(main_name, normalize_performer_name(performer)))

    if best >= 0.7:
        return 0.0
    if best >= 0.3:
        return 0.6 * (1.0 - best)
    return 0.95


def title_penalty(query_title: str, candidate_title: str) -> float:
    if not query_title or not candidate_title:
        return 0.0
    similarity = levenshtein_similarity(query_title, candidate_title)
    if similarity < 0.3:
        return 0.5 * (1.0 - similarity)
    return 0.0


def classify_match(score: float, matched_threshold: float = 0.65, unknown_threshold: float = 0.35) -> str:
    if score >= matched_threshold:
        return CLASS_MATCHED
    if score >= unknown_threshold:
        return CLASS_UNCERTAIN
    return CLASS_UNKNOWN


def _apply_penalty(score: float, query: ScoringQuery, candidate: ScoringCandidate) -> float:
    if not query.performer or not candidate.performers:
        return score
    penalty = max(
        performer_penalty(query.performer, candidate.performers),
        title_penalty(query.title, candidate.title),
    )
    if penalty > 0:
        logger.debug(
            "[LEARNED] penalty query=%r candidate=%r penalty=%.2f",
            query.title,
            candidate.title,
            penalty,
        )
        score *= 1.0 - penalty
    return score


def _best_index(scores: Sequence[float]) -> int:
    best_idx = 0
    for idx in range(1, len(scores)):
        if scores[idx] > scores[best_idx]:
            best_idx = idx
    return best_idx


class LearnedScorer:
    def __init__(
        self,
        model_factory: Callable[[str], _PairModel] | None = None,
        *,
        model_name: str = LEARNED_MODEL_NAME,
        batch_size: int = LEARNED_BATCH_SIZE,
    ) -> None:
        self.model_name = model_name
        self.batch_size = max(1, int(batch_size))
        self._model_factory = model_factory or HuggingFaceCrossEncoder
        self._lock = threading.Lock()
        self._loaded_event: threading.Event | None = None
        self._model: _PairModel | None = None
        self._state = STATE_UNLOADED
        self._load_error: Exception | None = None
        self._degraded = False

    @property
    def state(self) -> str:
        return self._state

    @property
    def load_error(self) -> Exception | None:
        return self._load_error

    @property
    def is_available(self) -> bool:
        return self._state != STATE_FAILED and not self._degraded

    def load(self) -> bool:
        """Load the model once; concurrent callers wait for the same load.

        Returns True when the model is ready. A load failure is remembered and
        disables the scorer until ``reset()``.
        """
        with self._lock:
            if self._state == STATE_READY:
                return True
            if self._state == STATE_FAILED:
                return False
            if self._state == STATE_LOADING and self._loaded_event is not None:
                waiter = self._loaded_event
            else:
                waiter = None
                self._state = STATE_LOADING
                self._loaded_event = threading.Event()
            event = self._loaded_event

        if waiter is not None:
            waiter.wait()
            return self._state == STATE_READY

        started = time.monotonic()
        logger.info("[LEARNED] loading model=%s", self.model_name)
        try:
            model = self._model_factory(self.model_name)
        except Exception as exc:
            logger.error("[LEARNED] model load failed model=%s error=%s", self.model_name, exc)
            logger.warning("[LEARNED] learned matching disabled for this session")
            with self._lock:
                self._load_error = exc
                self._state = STATE_FAILED
            event.set()
            return False

        with self._lock:
            self._model = model
            self._state = STATE_READY
        event.set()
        logger.info(
            "[LEARNED] model ready model=%s seconds=%.2f",
            self.model_name,
            time.monotonic() - started,
        )
        return True

    def unload(self) -> None:
        """Drop in-memory model references; on-disk caches are kept."""
        with self._lock:
            had_model = self._model is not None
            self._model = None
            if self._state == STATE_READY:
                self._state = STATE_UNLOADED
        if had_model:
            logger.info("[LEARNED] model unloaded model=%s", self.model_name)

    def clear_degraded(self) -> None:
        """Re-enable inference after a failure; called at the start of each job run."""
        self._degraded = False

    def reset(self) -> None:
        with self._lock:
            self._model = None
            self._state = STATE_UNLOADED
            self._load_error = None
            self._degraded = False

    @contextmanager
    def session(self) -> Iterator["LearnedScorer"]:
        self.load()
        try:
            yield self
        finally:
            self.unload()

    def _require_model(self) -> _PairModel:
        if self._degraded:
            raise ModelLoadError(f"model {self.model_name} is disabled after an inference failure")
        if not self.load():
            raise ModelLoadError(f"model {self.model_name} is not available: {self._load_error}")
        model = self._model
        if model is None:
            raise ModelLoadError(f"model {self.model_name} was unloaded")
        return model

    def _predict(self, pairs: list[tuple[str, str]]) -> list[float]:
        model = self._require_model()
        try:
            logits = model.predict(pairs)
        except Exception:
            self._degraded = True
            logger.exception("[LEARNED] inference failed pairs=%d", len(pairs))
            raise
        return [sigmoid(float(value)) for value in logits]

    def similarity(self, first: str, second: str) -> float:
        return self._predict([(first, second)])[0]

    def score(self, query: ScoringQuery, candidate: ScoringCandidate) -> float:
        score = self._predict([(build_query_text(query), build_candidate_text(candidate))])[0]
        return _apply_penalty(score, query, candidate)

    def score_batch(
        self,
        queries: Sequence[ScoringQuery],
        candidates: Sequence[ScoringCandidate],
    ) -> list[list[float]]:
        """Score the full queries x candidates cross product in one inference call."""
        if not queries or not candidates:
            return []
        candidate_texts = [build_candidate_text(candidate) for candidate in candidates]
        pairs = []
        for query in queries:
            query_text = build_query_text(query)
            pairs.extend((query_text, candidate_text) for candidate_text in candidate_texts)
        flat = self._predict(pairs)

        matrix = []
        idx = 0
        for query in queries:
            row = []
            for candidate in candidates:
                row.append(_apply_penalty(flat[idx], query, candidate))
                idx += 1
            matrix.append(row)
        return matrix

    def find_best_match(
        self,
        query: ScoringQuery,
        candidates: Sequence[ScoringCandidate],
        threshold: float = LEARNED_MATCH_THRESHOLD,
    ) -> LearnedMatch | None:
        if not candidates:
            return None
        matrix = self.score_batch([query], candidates)
        scores = matrix[0] if matrix else []
        if not scores:
            return None
        best_idx = _best_index(scores)
        if scores[best_idx] < threshold:
            logger.info(
                "[LEARNED] no match query=%r best=%.3f threshold=%.2f",
                query.title,
                scores[best_idx],
                threshold,
            )
            return None
        return LearnedMatch(candidate=candidates[best_idx], score=scores[best_idx], index=best_idx)

    def find_best_match_batch(
        self,
        queries: Sequence[ScoringQuery],
        candidates: Sequence[ScoringCandidate],
        threshold: float = LEARNED_MATCH_THRESHOLD,
    ) -> list[LearnedMatch | None]:
        """Best candidate per query, in query order.

        When the pair count exceeds ``batch_size`` the queries are scored in
        chunks so one inference call never holds more than ``batch_size`` pairs
        (a single query with more candidates than that is still one call).
        """
        if not queries or not candidates:
            return [None for _ in queries]

        queries_per_chunk = max(1, self.batch_size // len(candidates))
        if len(queries) * len(candidates) > self.batch_size:
            logger.info(
                "[LEARNED] chunking pairs=%d chunk_queries=%d",
                len(queries) * len(candidates),
                queries_per_chunk,
            )

        results: list[LearnedMatch | None] = []
        for start in range(0, len(queries), queries_per_chunk):
            chunk = queries[start:start + queries_per_chunk]
            for scores in self.score_batch(chunk, candidates):
                best_idx = _best_index(scores)
                if scores[best_idx] < threshold:
                    results.append(None)
                    continue
                results.append(
                    LearnedMatch(candidate=candidates[best_idx], score=scores[best_idx], index=best_idx)
                )
        return results
