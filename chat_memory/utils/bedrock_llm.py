"""
Amazon Bedrock LLM client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


def to_converse_messages(messages: List[Dict[str, str]]) -> Tuple[List[Dict[str, Any]], str]:
    """Split chat-style ``{role, content}`` messages into Converse format.

    System messages are joined into the system prompt; user and assistant
    messages become Converse content blocks in order.

    Returns:
        Tuple of (converse_messages, system_prompt)
    """
    system_parts = []
    converse_messages = []
    for msg in messages:
        role = msg.get('role')
        content = msg.get('content', '')
        if role == 'system':
            system_parts.append(content)
        elif role in ('user', 'assistant'):
            converse_messages.append({'role': role, 'content': [{'text': content}]})
        else:
            raise BedrockLLMError(f'Unsupported message role: {role}')
    return converse_messages, '\n\n'.join(system_parts)


class BedrockLLM:
    """Amazon Bedrock LLM client with retry logic and error handling."""

    def __init__(self, config: BedrockLLMConfig):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id

        # Create Bedrock runtime client with timeout configuration
        self.bedrock_runtime = boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=600,
                read_timeout=600,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None,
                          model_id: Optional[str] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Generate response using Bedrock LLM with retry logic.

        Args:
            messages: List of message dictionaries in Bedrock format
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation
            model_id: Model to call (uses config default if None)

        Returns:
            Tuple of (response_text, invoke_metrics)

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        max_tokens = max_tokens or self.config.max_tokens
        temperature = self.config.temperature if temperature is None else temperature
        stop_sequences = stop_sequences or []
        model_id = model_id or self.model_id

        inf_params = {
            'maxTokens': max_tokens,
            'temperature': temperature,
            'stopSequences': stop_sequences,
        }
        request = {'modelId': model_id, 'messages': messages, 'inferenceConfig': inf_params}
        if system_prompt:
            request['system'] = [{'text': system_prompt}]

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts} (model: {model_id})')

                stream = self.bedrock_runtime.converse_stream(**request).get('stream')

                msg = ''
                invoke_metrics = None

                if stream:
                    for event in stream:
                        if 'contentBlockDelta' in event:
                            msg += event['contentBlockDelta']['delta'].get('text', '')
                        if 'metadata' in event:
                            invoke_metrics = {**event['metadata'].get('usage', {}), **event['metadata'].get('metrics', {})}

                logger.debug(f'Bedrock LLM response generated successfully (length: {len(msg)})')
                return msg, invoke_metrics

            except (ClientError, BotoCoreError, json.JSONDecodeError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    def chat_completion(self,
                        messages: List[Dict[str, str]],
                        temperature: Optional[float] = None,
                        model_id: Optional[str] = None,
                        max_tokens: Optional[int] = None) -> str:
        """
        Run a chat-style completion and return the text of the reply.

        Args:
            messages: List of ``{'role': 'system'|'user'|'assistant', 'content': str}``
            temperature: Sampling temperature (uses config default if None)
            model_id: Model to call (uses config default if None)
            max_tokens: Maximum tokens to generate

        Returns:
            Text content of the first output message

        Raises:
            BedrockLLMError: If the request fails
        """
        converse_messages, system_prompt = to_converse_messages(messages)
        if not converse_messages:
            raise BedrockLLMError('At least one user message is required')

        response, _ = self.generate_response(messages=converse_messages,
                                             system_prompt=system_prompt,
                                             max_tokens=max_tokens,
                                             temperature=temperature,
                                             model_id=model_id)
        return response

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.chat_completion(messages=[{
                'role': 'system',
                'content': "You are a helpful assistant. Respond with just 'OK'."
            }, {
                'role': 'user',
                'content': 'Hi'
            }],
                                            max_tokens=10,
                                            temperature=0.0)
            return len(response.strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
