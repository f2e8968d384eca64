"""Unit tests for LLMClient."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import Mock, patch
from services.llm_client import LLMClient, LLMResponse, LLMClientError
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError


def mock_completion(content, prompt_tokens=150, completion_tokens=12):
    response = Mock()
    response.choices = [Mock(message=Mock(content=content))]
    response.usage = Mock(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return response


class TestLLMClient:
    """Test suite for LLMClient class."""

    def test_initialization_with_api_key(self):
        """Test LLMClient initializes with provided API key."""
        client = LLMClient(api_key="test_key")
        assert client.api_key == "test_key"

    def test_initialization_without_api_key_raises_error(self):
        """Test LLMClient raises error when no API key provided."""
        with patch('services.llm_client.GROQ_API_KEY', None):
            with pytest.raises(ValueError, match="GROQ_API_KEY must be provided"):
                LLMClient()

    @patch('services.llm_client.Groq')
    def test_complete_success(self, mock_groq_class):
        """Test successful completion with system prompt prepended."""
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = mock_completion('{"answer": "42"}')
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key", model="llama-3.3-70b-versatile")
        response = client.complete(
            "You are a tutor.",
            [{"role": "user", "content": "What is the answer?"}],
            temperature=0.3,
            max_tokens=2048
        )

        assert isinstance(response, LLMResponse)
        assert response.text == '{"answer": "42"}'
        assert response.tokens_input == 150
        assert response.tokens_output == 12
        assert response.model_used == "llama-3.3-70b-versatile"
        assert response.latency_ms >= 0

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "You are a tutor."}
        assert kwargs["messages"][1]["content"] == "What is the answer?"
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 2048
        assert kwargs["top_p"] == 0.95

    @patch('services.llm_client.Groq')
    def test_complete_with_missing_content_returns_empty_text(self, mock_groq_class):
        """Test None content is treated as an empty completion."""
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = mock_completion(None)
        mock_groq_class.return_value = mock_client

        response = LLMClient(api_key="test_key").complete("sys", [{"role": "user", "content": "hi"}])

        assert response.text == ""

    @patch('services.llm_client.Groq')
    def test_complete_handles_unknown_error(self, mock_groq_class):
        """Test that unexpected errors are raised with structured error."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = Exception("API Error")
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key", model="llama-3.1-8b-instant")

        with pytest.raises(LLMClientError) as exc_info:
            client.complete("sys", [{"role": "user", "content": "hi"}])

        error = exc_info.value.error
        assert error.code == "UNKNOWN_ERROR"
        assert "Unexpected error" in error.message
        assert error.details["model"] == "llama-3.1-8b-instant"
        assert error.details["error_type"] == "Exception"

    @patch('services.llm_client.Groq')
    def test_complete_handles_rate_limit_error(self, mock_groq_class):
        """Test that rate limit errors are handled with retry suggestion."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = RateLimitError(
            message="Rate limit exceeded",
            response=Mock(status_code=429),
            body=None
        )
        mock_groq_class.return_value = mock_client

        with pytest.raises(LLMClientError) as exc_info:
            LLMClient(api_key="test_key").complete("sys", [{"role": "user", "content": "hi"}])

        error = exc_info.value.error
        assert error.code == "RATE_LIMIT_ERROR"
        assert error.details["retry_after"] == 60

    @patch('services.llm_client.Groq')
    def test_complete_handles_authentication_error(self, mock_groq_class):
        """Test that authentication errors are handled properly."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = AuthenticationError(
            message="Invalid API key",
            response=Mock(status_code=401),
            body=None
        )
        mock_groq_class.return_value = mock_client

        with pytest.raises(LLMClientError) as exc_info:
            LLMClient(api_key="test_key").complete("sys", [{"role": "user", "content": "hi"}])

        assert exc_info.value.error.code == "AUTHENTICATION_ERROR"
        assert "Authentication failed" in exc_info.value.error.message

    @patch('services.llm_client.Groq')
    def test_complete_handles_timeout_error(self, mock_groq_class):
        """Test that timeout errors are handled properly."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = APITimeoutError(request=Mock())
        mock_groq_class.return_value = mock_client

        with pytest.raises(LLMClientError) as exc_info:
            LLMClient(api_key="test_key").complete("sys", [{"role": "user", "content": "hi"}])

        assert exc_info.value.error.code == "TIMEOUT_ERROR"
        assert "timed out" in exc_info.value.error.message

    @patch('services.llm_client.Groq')
    def test_complete_handles_generic_api_error(self, mock_groq_class):
        """Test that generic API errors are handled properly."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = APIError(
            message="Service unavailable",
            request=Mock(),
            body=None
        )
        mock_groq_class.return_value = mock_client

        with pytest.raises(LLMClientError) as exc_info:
            LLMClient(api_key="test_key").complete("sys", [{"role": "user", "content": "hi"}])

        assert exc_info.value.error.code == "API_ERROR"
        assert "Groq API error" in exc_info.value.error.message
