"""
Health check utilities for the application.
"""

import os
from typing import Any, Dict, Optional

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import AppConfig
from .config import config as default_config
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def check_health(config: Optional[AppConfig] = None) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(config)

        # Check if all components are healthy
        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(config: Optional[AppConfig] = None,
                      llm: Optional[BedrockLLM] = None,
                      embed: Optional[BedrockEmbed] = None,
                      opensearch: Optional[OpenSearchClient] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Clients are built from configuration unless passed in.

    Returns:
        Dictionary with health status of each component
    """
    config = config or default_config
    health_status = {}

    # Check Bedrock LLM
    try:
        llm = llm or BedrockLLM(config.bedrock_llm)
        health_status['bedrock_llm'] = {
            'healthy': llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': config.bedrock_llm.memory_manager_model_id
        }
    except Exception as e:
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    # Check Bedrock Embed
    try:
        embed = embed or BedrockEmbed(config.bedrock_embed)
        health_status['bedrock_embed'] = {
            'healthy': embed.health_check(),
            'service': 'Amazon Bedrock Embed',
            'model': config.bedrock_embed.model_id
        }
    except Exception as e:
        health_status['bedrock_embed'] = {'healthy': False, 'service': 'Amazon Bedrock Embed', 'error': str(e)}

    # Check OpenSearch
    try:
        opensearch = opensearch or OpenSearchClient(config.opensearch)
        health_status['opensearch'] = {
            'healthy': opensearch.health_check(),
            'service': 'Amazon OpenSearch',
            'endpoint': config.opensearch.endpoint
        }
    except Exception as e:
        health_status['opensearch'] = {'healthy': False, 'service': 'Amazon OpenSearch', 'error': str(e)}

    # Check relationship ledger directory
    data_dir = config.relationships.data_dir
    try:
        os.makedirs(data_dir, exist_ok=True)
        health_status['relationships'] = {
            'healthy': os.access(data_dir, os.W_OK),
            'service': 'Relationship ledger',
            'data_dir': data_dir
        }
    except OSError as e:
        health_status['relationships'] = {'healthy': False, 'service': 'Relationship ledger', 'error': str(e)}

    return health_status


def get_system_info(config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    config = config or default_config
    return {
        'service_name': 'chat-memory',
        'version': '1.0.0',
        'configuration': {
            'memory_manager_model': config.bedrock_llm.memory_manager_model_id,
            'bedrock_embed_model': config.bedrock_embed.model_id,
            'index_name': config.opensearch.index_name,
            'buffer': {
                'enabled': config.buffer.enabled,
                'silence_timeout_seconds': config.buffer.silence_timeout_seconds,
                'volume_threshold': config.buffer.volume_threshold,
                'token_cap': config.buffer.token_cap
            },
            'retention_hours': {
                'low': config.retention.low_importance_hours,
                'med': config.retention.med_importance_hours,
                'high': config.retention.high_importance_hours
            },
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status(config)
    }
