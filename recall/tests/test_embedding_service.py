"""Tests for the embedding service and cosine helpers."""

import numpy as np
import pytest
from unittest.mock import MagicMock, patch


class TestCosine:
    def test_cosine_similarity(self):
        from recall.common.embedding_service import cosine_similarity
        assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
        assert cosine_similarity([0, 0], [1, 0]) == 0.0

    def test_dimension_mismatch(self):
        from recall.common.embedding_service import cosine_similarity, batch_cosine_similarity
        with pytest.raises(ValueError):
            cosine_similarity([1, 0], [1, 0, 0])
        with pytest.raises(ValueError):
            batch_cosine_similarity([1, 0], [[1, 0, 0]])

    def test_batch(self):
        from recall.common.embedding_service import batch_cosine_similarity
        scores = batch_cosine_similarity([1, 0, 0], [[1, 0, 0], [0.6, 0.8, 0], [0, 0, 0]])
        assert scores == pytest.approx([1.0, 0.6, 0.0])
        assert batch_cosine_similarity([1, 0], []) == []

    def test_batch_single_row_matches_pairwise(self):
        from recall.common.embedding_service import cosine_similarity, batch_cosine_similarity
        assert batch_cosine_similarity([1, 0, 0], [[0.6, 0.8, 0]]) == [cosine_similarity([1, 0, 0], [0.6, 0.8, 0])]
        assert batch_cosine_similarity([1, 0], [[0, 0]]) == [0.0]


class TestEmbeddingService:
    def test_embed_with_fastembed(self):
        from recall.common.embedding_service import EmbeddingService
        model = MagicMock()
        model.embed.return_value = iter([np.array([0.1, 0.2, 0.3])])

        with patch("fastembed.TextEmbedding", return_value=model) as ctor:
            service = EmbeddingService(model="test-model")
            vector = service.embed_single("hello")

        ctor.assert_called_once_with(model_name="test-model")
        assert vector == pytest.approx([0.1, 0.2, 0.3])

    def test_load_failure_marks_unavailable(self):
        from recall.common.embedding_service import EmbeddingService
        with patch("fastembed.TextEmbedding", side_effect=OSError("no network")):
            service = EmbeddingService()
            with pytest.raises(RuntimeError):
                service.embed_single("hello")
        assert service.is_available is False

    def test_unknown_mode_is_unavailable(self):
        from recall.common.embedding_service import EmbeddingService
        service = EmbeddingService(mode="remote")
        assert service.is_available is False
        with pytest.raises(RuntimeError):
            service.embed(["hello"])

    def test_empty_text(self):
        from recall.common.embedding_service import EmbeddingService
        with pytest.raises(ValueError):
            EmbeddingService().embed_single("  ")
        assert EmbeddingService().embed([]) == []
