from pathlib import Path

import pytest

from chatbot_rag.config import RagSettings


def test_defaults():
    settings = RagSettings()

    assert settings.db_path == Path("vectors.db")
    assert settings.dimension == 768
    assert settings.chunk_size == 100
    assert settings.chunk_overlap == 20
    assert settings.batch_size == 10
    assert settings.top_k == 5
    assert settings.model_version is None


def test_from_env_overrides():
    settings = RagSettings.from_env(
        {
            "RAG_DB_PATH": "/data/rag.db",
            "RAG_DIMENSION": "384",
            "RAG_CHUNK_SIZE": "200",
            "RAG_EMBEDDING_MODEL": "sentence-transformers/all-MiniLM-L6-v2",
            "RAG_MODEL_VERSION": "minilm-v1",
        }
    )

    assert settings.db_path == Path("/data/rag.db")
    assert settings.dimension == 384
    assert settings.chunk_size == 200
    assert settings.chunk_overlap == 20
    assert settings.embedding_model == "sentence-transformers/all-MiniLM-L6-v2"
    assert settings.model_version == "minilm-v1"


def test_from_env_ignores_empty_and_foreign_values():
    settings = RagSettings.from_env({"RAG_TOP_K": "", "TOP_K": "9"})
    assert settings.top_k == 5


def test_from_env_rejects_non_integer():
    with pytest.raises(ValueError, match="RAG_BATCH_SIZE must be an integer"):
        RagSettings.from_env({"RAG_BATCH_SIZE": "ten"})


def test_from_env_reads_process_environment(monkeypatch):
    monkeypatch.setenv("RAG_TOP_K", "7")
    assert RagSettings.from_env().top_k == 7
