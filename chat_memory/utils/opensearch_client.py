"""
OpenSearch client wrapper for vector similarity search over memory records.
"""

import time
from typing import Any, Dict, List, Optional, Tuple

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException, RequestError
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

ALREADY_EXISTS_ERROR = 'resource_already_exists_exception'


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def score_to_cosine(score: float) -> float:
    """Recover cosine similarity from a lucene ``cosinesimil`` k-NN score.

    The engine reports ``(1 + cos) / 2``, so ``cos = 2 * score - 1``.
    """
    return 2.0 * score - 1.0


def memory_index_body(dimension: int) -> Dict[str, Any]:
    """Index mapping for memory records."""
    return {
        'mappings': {
            'properties': {
                'id': {
                    'type': 'keyword'
                },
                'content': {
                    'type': 'text'
                },
                'type': {
                    'type': 'keyword'
                },
                'importance': {
                    'type': 'integer'
                },
                'user_id': {
                    'type': 'keyword'
                },
                'tags': {
                    'type': 'keyword'
                },
                'timestamp': {
                    'type': 'long'
                },
                'created_at': {
                    'type': 'date'
                },
                'embedding': {
                    'type': 'knn_vector',
                    'dimension': dimension,
                    'method': {
                        'name': 'hnsw',
                        'space_type': 'cosinesimil',
                        'engine': 'lucene',
                        'parameters': {
                            'ef_construction': 128,
                            'm': 16
                        }
                    }
                }
            }
        },
        'settings': {
            'index': {
                'knn': True
            }
        }
    }


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None, sync_wait_seconds: float = 15.0):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built low-level client (skips AWS auth setup)
            sync_wait_seconds: Pause after index creation for the collection to sync
        """
        self.config = config
        self.index_name = config.index_name
        self.sync_wait_seconds = sync_wait_seconds

        if client is not None:
            self.client = client
            return

        # Get AWS credentials and create auth
        credentials = boto3.Session().get_credentials()
        auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
        # Parse endpoint to get host and port
        endpoint = config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=True,
                                 verify_certs=True,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def create_index_if_not_exists(self, index_name: Optional[str] = None) -> str:
        """
        Create the memory index if it doesn't exist.

        Creating an index another process just created is treated as success.

        Args:
            index_name: Name of the index (uses config default if None)

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = index_name or self.index_name

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=memory_index_body(self.config.dimension))
            logger.info(f'Created index {index_name}')
            if response.get('acknowledged', False):
                if self.sync_wait_seconds:
                    logger.info(f'Waiting {self.sync_wait_seconds}s for index {index_name} sync-up...')
                    time.sleep(self.sync_wait_seconds)
                return 'created'
            else:
                return 'failed'
        except RequestError as e:
            if e.error == ALREADY_EXISTS_ERROR:
                logger.debug(f'Index {index_name} was created concurrently')
                return 'exists'
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def delete_index(self, index_name: Optional[str] = None) -> bool:
        """
        Delete the memory index.

        Returns:
            True if an index was deleted, False if it did not exist
        """
        index_name = index_name or self.index_name

        try:
            if not self.client.indices.exists(index=index_name):
                logger.info(f'Index {index_name} does not exist')
                return False
            self.client.indices.delete(index=index_name)
            logger.info(f'Deleted index: {index_name}')
            return True
        except OpenSearchException as e:
            logger.error(f'Error deleting index {index_name}: {e}')
            raise OpenSearchError(f'Failed to delete index: {e}')

    def bulk_index(self, documents: List[Dict[str, Any]], index_name: Optional[str] = None) -> int:
        """
        Index several documents in one request.

        Args:
            documents: Documents to index, each carrying its own ``id`` field
            index_name: Name of the index (uses config default if None)

        Returns:
            Number of documents indexed without error
        """
        if not documents:
            return 0

        index_name = index_name or self.index_name
        body: List[Dict[str, Any]] = []
        for document in documents:
            body.append({'index': {'_index': index_name}})
            body.append(document)

        try:
            response = self.client.bulk(body=body)
        except OpenSearchException as e:
            logger.error(f'Error bulk indexing {len(documents)} documents: {e}')
            raise OpenSearchError(f'Failed to bulk index documents: {e}')
        except Exception as e:
            logger.error(f'Unexpected error bulk indexing documents: {e}')
            raise OpenSearchError(f'Unexpected error bulk indexing documents: {e}')

        failed = [item for item in response.get('items', []) if item.get('index', {}).get('error')]
        if failed:
            logger.warning(f'{len(failed)} of {len(documents)} documents failed to index: {failed[0]["index"]["error"]}')
        if response.get('errors') and len(failed) == len(documents):
            raise OpenSearchError('All documents failed to index')

        logger.debug(f'Indexed {len(documents) - len(failed)} documents in {index_name}')
        return len(documents) - len(failed)

    def vector_search(self,
                      query_vector: List[float],
                      filters: Optional[List[Dict[str, Any]]] = None,
                      top_k: int = 10,
                      score_threshold: Optional[float] = None,
                      index_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Perform vector similarity search.

        Args:
            query_vector: Query vector for similarity search
            filters: OpenSearch filter clauses, applied while the neighbours are searched
            top_k: Number of results to return
            score_threshold: Minimum cosine similarity for a hit to be kept
            index_name: Name of the index (uses config default if None)

        Returns:
            List of results with ``id``, ``score``, ``similarity`` and ``document``
        """
        index_name = index_name or self.index_name

        knn_query: Dict[str, Any] = {'vector': query_vector, 'k': top_k}
        if filters:
            # Efficient filtering: candidates are restricted before the top k are chosen
            knn_query['filter'] = {'bool': {'filter': filters}}

        search_body = {
            'size': top_k,
            'query': {
                'knn': {
                    'embedding': knn_query
                }
            },
            '_source': {
                'excludes': ['embedding']  # Don't return embedding in results
            }
        }

        try:
            response = self.client.search(index=index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

        results = []
        for hit in response['hits']['hits']:
            similarity = score_to_cosine(hit['_score'])
            if score_threshold is not None and similarity < score_threshold:
                continue
            results.append({'id': hit['_id'], 'score': hit['_score'], 'similarity': similarity, 'document': hit['_source']})

        logger.debug(f'Vector search returned {len(results)} results')
        return results

    def scroll(self,
               filters: Optional[List[Dict[str, Any]]] = None,
               limit: int = 100,
               cursor: Optional[List[Any]] = None,
               sort: Optional[List[Dict[str, Any]]] = None,
               index_name: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[List[Any]]]:
        """
        Page through documents by metadata, without a query vector.

        Args:
            filters: OpenSearch filter clauses
            limit: Page size
            cursor: ``search_after`` values from the previous page
            sort: Sort clauses (defaults to newest first, ties by id)
            index_name: Name of the index (uses config default if None)

        Returns:
            Tuple of (hits, next_cursor); next_cursor is None on the last page
        """
        index_name = index_name or self.index_name

        search_body: Dict[str, Any] = {
            'size': limit,
            'query': {
                'bool': {
                    'filter': filters or []
                }
            },
            'sort': sort or [{
                'timestamp': 'desc'
            }, {
                'id': 'asc'
            }],
            '_source': {
                'excludes': ['embedding']
            }
        }
        if cursor:
            search_body['search_after'] = cursor

        try:
            response = self.client.search(index=index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error scrolling documents: {e}')
            raise OpenSearchError(f'Scroll failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error scrolling documents: {e}')
            raise OpenSearchError(f'Unexpected error scrolling documents: {e}')

        hits = [{'id': hit['_id'], 'document': hit['_source'], 'sort': hit.get('sort')} for hit in response['hits']['hits']]
        next_cursor = hits[-1]['sort'] if len(hits) == limit and hits[-1]['sort'] else None
        return hits, next_cursor

    def get_document(self, info_id: str, index_name: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Get a specific document by its ``id`` field.

        Args:
            info_id: Record ID to retrieve
            index_name: Name of the index (uses config default if None)

        Returns:
            Document if found, None otherwise
        """
        index_name = index_name or self.index_name

        try:
            search_body = {
                'size': 1,
                'query': {
                    'term': {
                        'id': info_id
                    }
                },
                '_source': {
                    'excludes': ['embedding']
                }
            }

            response = self.client.search(index=index_name, body=search_body)

            hits = response['hits']['hits']
            if hits:
                return {'id': hits[0]['_id'], 'document': hits[0]['_source']}

            return None

        except OpenSearchException as e:
            logger.error(f'Error getting document {info_id}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error getting document {info_id}: {e}')
            raise OpenSearchError(f'Unexpected error getting document: {e}')

    def delete_documents(self, ids: List[str], index_name: Optional[str] = None) -> int:
        """
        Delete documents by their ``id`` field in one bulk request.

        Record ids are resolved to engine document ids first, since serverless
        vector collections assign their own ``_id``.

        Args:
            ids: Record IDs to delete
            index_name: Name of the index (uses config default if None)

        Returns:
            Number of documents deleted
        """
        if not ids:
            return 0

        index_name = index_name or self.index_name

        try:
            response = self.client.search(index=index_name,
                                          body={
                                              'size': len(ids),
                                              'query': {
                                                  'terms': {
                                                      'id': list(ids)
                                                  }
                                              },
                                              '_source': False
                                          })
            doc_ids = [hit['_id'] for hit in response['hits']['hits']]
            if not doc_ids:
                logger.warning(f'None of {len(ids)} documents found for deletion')
                return 0

            body = [{'delete': {'_index': index_name, '_id': doc_id}} for doc_id in doc_ids]
            response = self.client.bulk(body=body)

        except NotFoundError:
            logger.warning(f'Index {index_name} not found for deletion')
            return 0
        except OpenSearchException as e:
            logger.error(f'Error deleting {len(ids)} documents: {e}')
            raise OpenSearchError(f'Failed to delete documents: {e}')
        except Exception as e:
            logger.error(f'Unexpected error deleting documents: {e}')
            raise OpenSearchError(f'Unexpected error deleting documents: {e}')

        deleted = sum(1 for item in response.get('items', []) if item.get('delete', {}).get('result') == 'deleted')
        logger.debug(f'Deleted {deleted} documents from {index_name}')
        return deleted

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
