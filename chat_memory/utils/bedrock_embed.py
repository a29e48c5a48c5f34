"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Cohere embed models accept at most 96 texts per request
COHERE_MAX_BATCH = 96


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        # Create Bedrock runtime client
        self.bedrock = boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

                accept = 'application/json'
                content_type = 'application/json'
                response = self.bedrock.invoke_model(body=body, modelId=self.model_id, accept=accept, contentType=content_type)

                result = json.loads(response.get('body').read())
                logger.debug('Bedrock Embed request successful')
                return result

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _zero_vector(self) -> List[float]:
        return [0.0] * self.output_embedding_length

    def _embed_titan(self, text: str) -> List[float]:
        data = {'inputText': text, 'dimensions': self.output_embedding_length}
        response = self._call_with_retry(data)
        embedding = response.get('embedding')
        if not embedding:
            raise BedrockEmbedError('No embedding returned from Bedrock')
        return embedding

    def _embed_cohere(self, texts: List[str], input_type: str) -> List[List[float]]:
        if self.output_embedding_length != 1024:
            raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')

        embeddings: List[List[float]] = []
        for start in range(0, len(texts), COHERE_MAX_BATCH):
            chunk = texts[start:start + COHERE_MAX_BATCH]
            response = self._call_with_retry({'input_type': input_type, 'texts': chunk})
            chunk_embeddings = response.get('embeddings') or []
            if len(chunk_embeddings) != len(chunk):
                raise BedrockEmbedError(f'Expected {len(chunk)} embeddings, got {len(chunk_embeddings)}')
            embeddings.extend(chunk_embeddings)
        return embeddings

    def _embed(self, texts: List[str], input_type: str) -> List[List[float]]:
        model = self.model_id.lower()
        if 'titan' in model:
            return [self._embed_titan(text) for text in texts]
        elif 'cohere' in model:
            return self._embed_cohere(texts, input_type)
        else:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """
        Generate document embeddings for a batch of texts.

        The result has the same length and order as ``texts``. Blank texts get
        a zero vector without a service call.

        Args:
            texts: Texts to embed

        Returns:
            List of embedding vectors

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not texts:
            return []

        indexed = [(i, t) for i, t in enumerate(texts) if t and t.strip()]
        results = [self._zero_vector() for _ in texts]
        if not indexed:
            logger.warning('Only empty texts provided for batch embedding')
            return results

        try:
            logger.debug(f'Generating embeddings for {len(indexed)} texts')
            embeddings = self._embed([t for _, t in indexed], 'search_document')
        except BedrockEmbedError:
            raise
        except Exception as e:
            logger.error(f'Error generating batch embeddings: {e}')
            raise BedrockEmbedError(f'Batch embedding failed: {e}')

        for (i, _), embedding in zip(indexed, embeddings):
            results[i] = embedding
        return results

    def embed_document(self, text: str) -> List[float]:
        """
        Generate embeddings for document text.

        Args:
            text: Text to embed

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not text or not text.strip():
            logger.warning('Empty text provided for document embedding')
            return self._zero_vector()

        return self.embed_documents([text])[0]

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for query text.

        Args:
            text: Query text to embed

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not text or not text.strip():
            logger.warning('Empty text provided for query embedding')
            return self._zero_vector()

        try:
            return self._embed([text], 'search_query')[0]
        except BedrockEmbedError:
            raise
        except Exception as e:
            logger.error(f'Error generating query embedding: {e}')
            raise BedrockEmbedError(f'Query embedding failed: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed_document('test')
            return len(test_embedding) == self.output_embedding_length

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
