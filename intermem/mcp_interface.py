"""
MCP Interface Layer using fastmcp for agent orchestration.

Tool signatures only describe their arguments. Ranges, allowed values and
non-empty checks are enforced by the operations layer, so a rejected argument
still gets a response carrying its request id.
"""
from typing import Annotated, Any, Dict, List, Optional

from fastmcp import FastMCP
from pydantic import Field

from .instructions import SERVER_INSTRUCTIONS
from .services.operations import MemoryOperations
from .utils.config import config
from .utils.logging_config import get_logger
from .utils.neptune_client import NeptuneError

logger = get_logger(__name__)

OutputFormat = Annotated[str, Field(description="Response format: 'text' or 'json'")]
UserName = Annotated[str, Field(description='User name')]
Topics = Annotated[Optional[List[str]], Field(description='Topic names')]
Entities = Annotated[Optional[List[str]], Field(description='Named entities mentioned in the exchange')]
Sentiment = Annotated[Optional[str], Field(description='One of positive, negative, neutral or mixed')]
MemoryType = Annotated[str, Field(description='One of insight, fact, preference, pattern or connection')]
RelationshipType = Annotated[
    str, Field(description='One of RELATED_TO, CONTRADICTS, BUILDS_ON, REFERENCES or SIMILAR_TO')]
Days = Annotated[Optional[int], Field(description='Window in days (1-3650)')]
Limit = Annotated[int, Field(description='Maximum number of results (1-100)')]
Unit = Annotated[float, Field(description='Value between 0.0 and 1.0')]

# Initialize FastMCP application
mcp = FastMCP('Interaction Memory', instructions=SERVER_INSTRUCTIONS)
_memory_operations: Optional[MemoryOperations] = None


def _operations() -> MemoryOperations:
    global _memory_operations
    if _memory_operations is None:
        _memory_operations = MemoryOperations.from_config(config)
    return _memory_operations


@mcp.tool()
def cognitive_recall(user: UserName,
                     input: Annotated[str, Field(description='The new user message')],
                     extract_topics: bool = True,
                     window_days: Days = None,
                     limit: Annotated[Optional[int], Field(description='Maximum recent interactions (1-100)')] = None,
                     output_format: OutputFormat = 'text') -> str:
    """Recall context for a user BEFORE answering.

    Creates the user if missing. Never stores an interaction.
    """
    return _operations().recall(user, input, extract_topics, window_days, limit, output_format)


@mcp.tool()
def cognitive_persist(user: UserName,
                      input: str,
                      output: Annotated[str, Field(description='The agent response')],
                      intent: Optional[str] = None,
                      sentiment: Sentiment = None,
                      entities: Entities = None,
                      topics: Annotated[Optional[List[str]],
                                        Field(description='Topics; extracted from input when omitted')] = None,
                      previous_interaction_id: Annotated[Optional[str],
                                                         Field(description='Last interaction id from recall')] = None,
                      store_memory: bool = False,
                      memory_content: Optional[str] = None,
                      memory_type: MemoryType = 'insight',
                      memory_importance: Annotated[Optional[float], Field(description='Value between 0.0 and 1.0')] = None,
                      collection: Optional[str] = None,
                      atomic: Annotated[bool, Field(description='Write the graph steps in one transaction')] = False,
                      output_format: OutputFormat = 'text') -> str:
    """Persist the exchange AFTER answering, optionally with a semantic memory."""
    return _operations().persist(user,
                                 input,
                                 output,
                                 intent=intent,
                                 sentiment=sentiment,
                                 entities=entities,
                                 topics=topics,
                                 previous_interaction_id=previous_interaction_id,
                                 store_memory=store_memory,
                                 memory_content=memory_content,
                                 memory_type=memory_type,
                                 memory_importance=memory_importance,
                                 collection=collection,
                                 atomic=atomic,
                                 output_format=output_format)


@mcp.tool()
def cognitive_validate(interaction_id: Optional[str] = None, output_format: OutputFormat = 'text') -> str:
    """Check that a persisted interaction exists and is linked to its user."""
    return _operations().validate(interaction_id, output_format)


@mcp.tool()
def interaction_store(user: UserName,
                      input: str,
                      output: str,
                      intent: Optional[str] = None,
                      sentiment: Sentiment = None,
                      entities: Entities = None,
                      topics: Topics = None,
                      previous_interaction_id: Optional[str] = None,
                      atomic: bool = False,
                      output_format: OutputFormat = 'text') -> str:
    """Store an interaction with its user, topics and conversation chain."""
    return _operations().store_interaction(user, input, output, intent, sentiment, entities, topics,
                                           previous_interaction_id, atomic, output_format)


@mcp.tool()
def interaction_get_context(user: UserName,
                            days: Annotated[int, Field(description='Window in days (1-3650)')] = 7,
                            limit: Limit = 10,
                            topics: Topics = None,
                            output_format: OutputFormat = 'text') -> str:
    """Recent interactions of a user, newest first."""
    return _operations().get_context(user, days, limit, topics, output_format)


@mcp.tool()
def interaction_find_related(topics: Topics = None,
                             entities: Entities = None,
                             user: Optional[str] = None,
                             limit: Limit = 5,
                             window_days: Days = None,
                             output_format: OutputFormat = 'text') -> str:
    """Interactions sharing any of the topics and any of the entities."""
    return _operations().find_related(topics, entities, user, limit, window_days, output_format)


@mcp.tool()
def user_get_profile(user: UserName, output_format: OutputFormat = 'text') -> str:
    """Interaction count and favourite topics of a user."""
    return _operations().get_user_profile(user, output_format)


@mcp.tool()
def graph_create_relationship(from_id: str,
                              to_id: str,
                              relationship_type: RelationshipType,
                              properties: Optional[Dict[str, Any]] = None,
                              output_format: OutputFormat = 'text') -> str:
    """Create a typed relationship between two interactions."""
    return _operations().create_relationship(from_id, to_id, relationship_type, properties, output_format)


@mcp.tool()
def analytics_get_insights(user: Optional[str] = None,
                           days: Days = None,
                           output_format: OutputFormat = 'text') -> str:
    """Interaction totals, intents, sentiments and trending topics over a window."""
    return _operations().get_insights(user, days, output_format)


@mcp.tool()
def analytics_topic_trends(user: Optional[str] = None,
                           days: Days = None,
                           limit: Limit = 10,
                           output_format: OutputFormat = 'text') -> str:
    """Most mentioned topics over a window."""
    return _operations().get_topic_trends(user, days, limit, output_format)


@mcp.tool()
def memory_store(content: str,
                 type: MemoryType,
                 user: Optional[str] = None,
                 confidence: Unit = 0.8,
                 importance: Unit = 0.5,
                 tags: Optional[str] = None,
                 emotion: Annotated[Optional[str],
                                    Field(description='One of curiosity, satisfaction, concern, neutral or excitement')] = None,
                 collection: Optional[str] = None,
                 output_format: OutputFormat = 'text') -> str:
    """Store a semantic memory document."""
    metadata = {
        'type': type,
        'user': user,
        'confidence': confidence,
        'importance': importance,
        'tags': tags,
        'emotion': emotion,
    }
    return _operations().memory_store(content, metadata, collection, output_format)


@mcp.tool()
def memory_search(query: str,
                  collection: Optional[str] = None,
                  n_results: Annotated[int, Field(description='Maximum number of results (1-50)')] = 5,
                  type: Optional[str] = None,
                  user: Optional[str] = None,
                  min_importance: Annotated[Optional[float], Field(description='Value between 0.0 and 1.0')] = None,
                  output_format: OutputFormat = 'text') -> str:
    """Search semantic memories by similarity, optionally filtered."""
    metadata_filter = {
        key: value
        for key, value in (('type', type), ('user', user), ('min_importance', min_importance))
        if value is not None
    }
    return _operations().memory_search(query, collection, n_results, metadata_filter or None, output_format)


@mcp.tool()
def vector_query(collection: str,
                 query_texts: List[str],
                 n_results: Annotated[int, Field(description='Maximum number of results (1-50)')] = 5,
                 output_format: OutputFormat = 'text') -> str:
    """Query a vector collection, one result list per query text."""
    return _operations().vector_query(collection, query_texts, n_results, output_format)


@mcp.tool()
def vector_add(collection: str,
               documents: List[str],
               metadatas: Optional[List[Dict[str, Any]]] = None,
               ids: Optional[List[str]] = None,
               output_format: OutputFormat = 'text') -> str:
    """Add documents to a vector collection."""
    return _operations().vector_add(collection, documents, metadatas, ids, output_format)


@mcp.tool()
def system_health(output_format: OutputFormat = 'text') -> str:
    """Health of the graph, vector and embedding backends."""
    return _operations().health(output_format)


def main() -> None:
    global _memory_operations
    _memory_operations = MemoryOperations.from_config(config)
    try:
        _memory_operations.interactions.neptune.open()
    except NeptuneError as e:
        logger.warning(f'Graph connection not available at startup: {e}')
    logger.info(f'Starting Interaction Memory server ({config.mcp.transport})')
    try:
        if config.mcp.transport == 'stdio':
            mcp.run(transport='stdio')
        else:
            mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
    finally:
        _memory_operations.close()
        _memory_operations = None


if __name__ == '__main__':
    main()
