"""
Configuration management for AWS services and memory subsystem settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    memory_manager_model_id: str
    max_tokens: int
    temperature: float
    extraction_temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    service: str
    index_name: str
    dimension: int


@dataclass
class BufferConfig:
    """Thresholds that decide when buffered conversation is summarized."""
    enabled: bool
    silence_timeout_seconds: float
    volume_threshold: int
    token_cap: int


@dataclass
class RetrievalConfig:
    """Memory retrieval counts and re-ranking weights."""
    enabled: bool
    user_fact_count: int
    server_lore_count: int
    score_threshold: float
    similarity_weight: float
    importance_weight: float
    recency_weight: float
    recency_window_days: float
    forgetting_penalty: float
    forgetting_min_importance: int
    forgetting_max_importance: int
    forgetting_age_days: float


@dataclass
class RetentionConfig:
    """Importance-tiered retention windows.

    Importance 1-4 uses ``low_importance_hours``, 5-7 ``med_importance_hours``,
    8-9 ``high_importance_hours``. Importance 10 is never expired.
    """
    low_importance_hours: float
    med_importance_hours: float
    high_importance_hours: float
    cleanup_interval_hours: float
    page_size: int


@dataclass
class RelationshipsConfig:
    """Configuration for the relationship ledger."""
    data_dir: str


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    opensearch: OpenSearchConfig
    buffer: BufferConfig
    retrieval: RetrievalConfig
    retention: RetentionConfig
    relationships: RelationshipsConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    default_model = os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0')
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=default_model,
                                          memory_manager_model_id=os.getenv('MEMORY_MANAGER_MODEL_ID', default_model),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '4096')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.7')),
                                          extraction_temperature=float(os.getenv('MEMORY_EXTRACTION_TEMPERATURE', '0.3')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'aoss'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'discord_memories'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')))

    # Memory buffer configuration
    buffer_config = BufferConfig(enabled=_env_bool('MEMORY_BUFFER_ENABLED', 'true'),
                                 silence_timeout_seconds=float(os.getenv('MEMORY_SILENCE_TIMEOUT_SECONDS', '300')),
                                 volume_threshold=int(os.getenv('MEMORY_VOLUME_THRESHOLD', '30')),
                                 token_cap=int(os.getenv('MEMORY_TOKEN_CAP', '2000')))

    # Retrieval configuration
    retrieval_config = RetrievalConfig(enabled=_env_bool('MEMORY_RETRIEVAL_ENABLED', 'true'),
                                       user_fact_count=int(os.getenv('MEMORY_USER_FACT_COUNT', '5')),
                                       server_lore_count=int(os.getenv('MEMORY_SERVER_LORE_COUNT', '3')),
                                       score_threshold=float(os.getenv('MEMORY_SCORE_THRESHOLD', '0.5')),
                                       similarity_weight=float(os.getenv('MEMORY_SIMILARITY_WEIGHT', '0.55')),
                                       importance_weight=float(os.getenv('MEMORY_IMPORTANCE_WEIGHT', '0.25')),
                                       recency_weight=float(os.getenv('MEMORY_RECENCY_WEIGHT', '0.20')),
                                       recency_window_days=float(os.getenv('MEMORY_RECENCY_WINDOW_DAYS', '30')),
                                       forgetting_penalty=float(os.getenv('MEMORY_FORGETTING_PENALTY', '0.1')),
                                       forgetting_min_importance=int(os.getenv('MEMORY_FORGETTING_MIN_IMPORTANCE', '5')),
                                       forgetting_max_importance=int(os.getenv('MEMORY_FORGETTING_MAX_IMPORTANCE', '6')),
                                       forgetting_age_days=float(os.getenv('MEMORY_FORGETTING_AGE_DAYS', '3')))

    # Retention configuration
    retention_config = RetentionConfig(low_importance_hours=float(os.getenv('MEMORY_RETENTION_LOW_HOURS', '24')),
                                       med_importance_hours=float(os.getenv('MEMORY_RETENTION_MED_HOURS', '168')),
                                       high_importance_hours=float(os.getenv('MEMORY_RETENTION_HIGH_HOURS', '504')),
                                       cleanup_interval_hours=float(os.getenv('MEMORY_CLEANUP_INTERVAL_HOURS', '6')),
                                       page_size=int(os.getenv('MEMORY_CLEANUP_PAGE_SIZE', '100')))

    relationships_config = RelationshipsConfig(data_dir=os.getenv('RELATIONSHIPS_DATA_DIR', os.path.join(os.getcwd(), 'data')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     opensearch=opensearch_config,
                     buffer=buffer_config,
                     retrieval=retrieval_config,
                     retention=retention_config,
                     relationships=relationships_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
