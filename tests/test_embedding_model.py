"""Unit tests for EmbeddingModel class."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import Mock, patch, MagicMock
import httpx
from services.embedding_model import EmbeddingModel
from exceptions import EmbeddingUnavailableError


def mock_http_client(mock_client_class, response=None, side_effect=None):
    """Wire a patched httpx.Client so `with httpx.Client() as c: c.post(...)` works."""
    mock_client = MagicMock()
    post = mock_client.__enter__.return_value.post
    if side_effect is not None:
        post.side_effect = side_effect
    else:
        post.return_value = response
    mock_client_class.return_value = mock_client
    return post


def ok_response(vectors):
    response = Mock()
    response.status_code = 200
    response.json.return_value = {
        "data": [{"index": i, "embedding": v} for i, v in enumerate(vectors)]
    }
    return response


class TestEmbeddingModel:
    """Test suite for EmbeddingModel."""

    def test_initialization_success(self):
        """Test successful initialization with API key."""
        model = EmbeddingModel(api_key="test_key", model_name="test-model", api_url="https://example.test/v1/embeddings")
        assert model.api_key == "test_key"
        assert model.model_name == "test-model"
        assert model.api_url == "https://example.test/v1/embeddings"

    def test_initialization_without_api_key(self):
        """Test initialization fails without API key."""
        with pytest.raises(ValueError, match="EMBEDDING_API_KEY"):
            EmbeddingModel(api_key=None)

    def test_embed_text_empty_string(self):
        """Test embed_text raises error for empty string."""
        model = EmbeddingModel(api_key="test_key")

        with pytest.raises(ValueError, match="Text cannot be empty"):
            model.embed_text("")

        with pytest.raises(ValueError, match="Text cannot be empty"):
            model.embed_text("   ")

    def test_embed_batch_validation(self):
        """Test embed_batch rejects empty lists and empty entries."""
        model = EmbeddingModel(api_key="test_key")

        with pytest.raises(ValueError, match="Texts list cannot be empty"):
            model.embed_batch([])

        with pytest.raises(ValueError, match="Texts in batch cannot be empty"):
            model.embed_batch(["text", "  "])

    @patch('httpx.Client')
    def test_embed_text_success(self, mock_client_class):
        """Test successful single text embedding."""
        post = mock_http_client(mock_client_class, ok_response([[0.1, 0.2, 0.3]]))

        model = EmbeddingModel(api_key="test_key", model_name="test-model")
        result = model.embed_text("test text")

        assert result == [0.1, 0.2, 0.3]
        kwargs = post.call_args.kwargs
        assert kwargs["json"] == {"model": "test-model", "input": ["test text"]}
        assert kwargs["headers"]["Authorization"] == "Bearer test_key"

    @patch('httpx.Client')
    def test_embed_batch_restores_input_order(self, mock_client_class):
        """Test batch results are ordered by the returned index."""
        response = Mock()
        response.status_code = 200
        response.json.return_value = {"data": [
            {"index": 1, "embedding": [0.4, 0.5]},
            {"index": 0, "embedding": [0.1, 0.2]},
        ]}
        mock_http_client(mock_client_class, response)

        result = EmbeddingModel(api_key="test_key").embed_batch(["text1", "text2"])

        assert result == [[0.1, 0.2], [0.4, 0.5]]

    @pytest.mark.parametrize("status_code,message", [
        (429, "Rate limit exceeded"),
        (401, "Invalid API key"),
        (403, "Invalid API key"),
        (500, "status 500"),
    ])
    @patch('httpx.Client')
    def test_http_errors_are_unavailable(self, mock_client_class, status_code, message):
        """Test non-200 statuses surface as EmbeddingUnavailableError without retrying."""
        response = Mock()
        response.status_code = status_code
        response.text = "error body"
        post = mock_http_client(mock_client_class, response)

        with pytest.raises(EmbeddingUnavailableError, match=message):
            EmbeddingModel(api_key="test_key").embed_text("test text")

        assert post.call_count == 1

    @patch('httpx.Client')
    def test_timeout_is_unavailable(self, mock_client_class):
        """Test timeouts surface as EmbeddingUnavailableError."""
        mock_http_client(mock_client_class, side_effect=httpx.TimeoutException("Timeout"))

        with pytest.raises(EmbeddingUnavailableError, match="timeout"):
            EmbeddingModel(api_key="test_key").embed_text("test text")

    @patch('httpx.Client')
    def test_network_error_is_unavailable(self, mock_client_class):
        """Test connection errors surface as EmbeddingUnavailableError."""
        mock_http_client(mock_client_class, side_effect=httpx.ConnectError("Connection refused"))

        with pytest.raises(EmbeddingUnavailableError, match="Network error"):
            EmbeddingModel(api_key="test_key").embed_text("test text")

    @patch('httpx.Client')
    def test_malformed_payload_is_unavailable(self, mock_client_class):
        """Test a payload without data[].embedding is rejected."""
        response = Mock()
        response.status_code = 200
        response.json.return_value = [[0.1, 0.2]]
        mock_http_client(mock_client_class, response)

        with pytest.raises(EmbeddingUnavailableError, match="Malformed"):
            EmbeddingModel(api_key="test_key").embed_text("test text")

    @patch('httpx.Client')
    def test_count_mismatch_is_unavailable(self, mock_client_class):
        """Test fewer vectors than inputs is rejected."""
        mock_http_client(mock_client_class, ok_response([[0.1, 0.2]]))

        with pytest.raises(EmbeddingUnavailableError, match="Expected 2 embeddings"):
            EmbeddingModel(api_key="test_key").embed_batch(["one", "two"])
