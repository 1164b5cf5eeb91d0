"""
Call-style operations exposed to agents.

Every call gets a fresh request id that appears in its response, success or
failure. Failures are returned as descriptive payloads and never raised to the
transport.
"""

import json
from typing import Any, Callable, Dict, List, Optional

from ..models.core import InteractionDraft
from ..models.errors import BackendError, PartialWriteError, ValidationError
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import AppConfig, config
from ..utils.formatting import JSON, TEXT, format_error_message, parse_output_format, render, yes_no
from ..utils.health_check import get_health_status
from ..utils.id_utils import generate_id
from ..utils.logging_config import get_logger, get_request_logger
from ..utils.neptune_client import NeptuneClient
from ..utils.opensearch_client import OpenSearchClient
from .analytics import AnalyticsAggregator
from .cognitive_workflow import CognitiveWorkflow, CognitiveWorkflowError
from .interaction_store import InteractionStore
from .semantic_memory import SemanticMemoryStore

logger = get_logger(__name__)


def _interaction_lines(interactions: List[Dict[str, Any]]) -> List[str]:
    lines = []
    for index, interaction in enumerate(interactions, start=1):
        topics = ', '.join(interaction.get('topics') or []) or 'none'
        lines.append(f" {index}. [{interaction.get('time')}] {interaction.get('id')} ({topics})")
        lines.append(f"    {interaction.get('user')}: {interaction.get('input')}")
        lines.append(f"    agent: {interaction.get('output')}")
    return lines


class MemoryOperations:
    """Request-scoped entry points over the memory engine services."""

    def __init__(self,
                 interactions: InteractionStore,
                 memories: SemanticMemoryStore,
                 workflow: CognitiveWorkflow,
                 analytics: AnalyticsAggregator,
                 app_config: Optional[AppConfig] = None):
        self.interactions = interactions
        self.memories = memories
        self.workflow = workflow
        self.analytics = analytics
        self.config = app_config or config

    @classmethod
    def from_config(cls, app_config: Optional[AppConfig] = None) -> 'MemoryOperations':
        """Build every backend client once for the whole process. Connections open on first use."""
        app_config = app_config or config
        neptune = NeptuneClient(app_config.neptune, connect=False)
        interactions = InteractionStore(neptune)
        memories = SemanticMemoryStore(OpenSearchClient(app_config.opensearch), BedrockEmbed(app_config.bedrock_embed),
                                       app_config.memory)
        workflow = CognitiveWorkflow(interactions, memories, app_config.memory)
        analytics = AnalyticsAggregator(neptune, interactions.queries)
        return cls(interactions, memories, workflow, analytics, app_config)

    def close(self) -> None:
        self.interactions.neptune.close()

    def _run(self,
             operation: str,
             action: str,
             output_format: Optional[str],
             compute: Callable[[], Dict[str, Any]],
             to_text: Callable[[Dict[str, Any]], str]) -> str:
        request_id = generate_id(operation)
        log = get_request_logger(logger, request_id)

        try:
            output_format = parse_output_format(output_format)
        except ValidationError as e:
            return self._failure(request_id, TEXT, action, e, 'validation')

        try:
            result = compute()
        except ValidationError as e:
            log.warning(f'{action} rejected: {e}')
            return self._failure(request_id, output_format, action, e, 'validation')
        except PartialWriteError as e:
            log.error(f'{action} partially applied: {e}')
            return self._failure(request_id,
                                 output_format,
                                 action,
                                 e,
                                 'partial_write',
                                 interaction_id=e.interaction_id,
                                 failed_step=e.failed_step,
                                 completed_steps=list(e.completed_steps))
        except CognitiveWorkflowError as e:
            log.error(f'{action} failed: {e}')
            return self._failure(request_id, output_format, action, e, 'backend', interaction_id=e.interaction_id)
        except BackendError as e:
            log.error(f'{action} failed: {e}')
            return self._failure(request_id, output_format, action, e, 'backend')
        except Exception as e:
            log.exception(f'Unexpected error in {action}: {e}')
            return self._failure(request_id, output_format, action, e, 'internal')

        log.debug(f'{action} succeeded')
        payload = {'request_id': request_id, 'success': True, **result}
        return render(output_format, payload, lambda data: '\n'.join([f'Request ID: {request_id}', to_text(data)]))

    @staticmethod
    def _failure(request_id: str, output_format: str, action: str, error: BaseException, kind: str, **details) -> str:
        message = format_error_message(action, error)
        if output_format == JSON:
            payload = {'request_id': request_id, 'success': False, 'error_type': kind, 'error': message, **details}
            return json.dumps(payload, indent=2, default=str)

        lines = [f'Request ID: {request_id}', message]
        if kind == 'partial_write':
            lines.append(f"Persisted steps: {', '.join(details['completed_steps'])}")
            lines.append(f"Interaction ID: {details['interaction_id']}")
        return '\n'.join(lines)

    # Cognitive workflow

    def recall(self,
               user: str,
               user_input: str,
               extract_topics: bool = True,
               window_days: Optional[int] = None,
               limit: Optional[int] = None,
               output_format: str = TEXT) -> str:

        def compute():
            return self.workflow.think(user, user_input, extract_topics, window_days, limit).to_dict()

        def to_text(data):
            lines = [
                f"Context summary for \"{data['user']}\"",
                f"- Total interactions: {data['interaction_count']}",
                f"- New user: {data['is_new_user']}",
                f"- Last interaction ID: {data['last_interaction_id'] or 'none'}",
                f"- Suggested topics: {', '.join(data['suggested_topics']) or 'none'}",
            ]
            if data['recent_interactions']:
                lines += ['', 'Recent interactions:'] + _interaction_lines(data['recent_interactions'])
            else:
                lines += ['', 'No recent interactions available.']
            return '\n'.join(lines)

        return self._run('recall', 'Cognitive recall', output_format, compute, to_text)

    def persist(self,
                user: str,
                user_input: str,
                output: str,
                intent: Optional[str] = None,
                sentiment: Optional[str] = None,
                entities: Optional[List[str]] = None,
                topics: Optional[List[str]] = None,
                previous_interaction_id: Optional[str] = None,
                store_memory: bool = False,
                memory_content: Optional[str] = None,
                memory_type: str = 'insight',
                memory_importance: Optional[float] = None,
                collection: Optional[str] = None,
                atomic: bool = False,
                output_format: str = TEXT) -> str:

        def compute():
            result = self.workflow.respond(user,
                                           user_input,
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
                                           atomic=atomic)
            return result.to_dict()

        def to_text(data):
            lines = [f"Stored interaction with ID: {data['interaction_id']}", f'User: {user}']
            if data['memory_stored']:
                lines.append(f"Stored memory with ID: {data['memory_id']}")
            return '\n'.join(lines)

        return self._run('persist', 'Cognitive persist', output_format, compute, to_text)

    def validate(self, interaction_id: Optional[str], output_format: str = TEXT) -> str:

        def compute():
            return self.workflow.validate(interaction_id).to_dict()

        def to_text(data):
            status = 'valid' if data['valid'] else 'invalid'
            lines = [
                f"Interaction {data['interaction_id'] or '(none)'} is {status}",
                f"- Exists: {yes_no(data['exists'])}",
                f"- Owning user: {yes_no(data['has_owning_user'])}",
                f"- Topics: {yes_no(data['has_at_least_one_topic'])}",
            ]
            if data.get('reason'):
                lines.append(f"- Reason: {data['reason']}")
            return '\n'.join(lines)

        return self._run('validate', 'Interaction validation', output_format, compute, to_text)

    # Graph

    def store_interaction(self,
                          user: str,
                          user_input: str,
                          output: str,
                          intent: Optional[str] = None,
                          sentiment: Optional[str] = None,
                          entities: Optional[List[str]] = None,
                          topics: Optional[List[str]] = None,
                          previous_interaction_id: Optional[str] = None,
                          atomic: bool = False,
                          output_format: str = TEXT) -> str:

        def compute():
            draft = InteractionDraft(user=user,
                                     input=user_input,
                                     output=output,
                                     intent=intent,
                                     sentiment=sentiment,
                                     entities=list(entities or []),
                                     topics=list(topics or []))
            create = self.interactions.create_interaction_atomic if atomic else self.interactions.create_interaction
            return {'interaction_id': create(draft, previous_interaction_id), 'atomic': atomic}

        def to_text(data):
            return '\n'.join([
                f"Stored interaction with ID: {data['interaction_id']}", f'User: {user}', f"Topics: {', '.join(topics or []) or 'none'}"
            ])

        return self._run('interaction_store', 'Interaction store', output_format, compute, to_text)

    def get_context(self,
                    user: str,
                    days: int = 7,
                    limit: int = 10,
                    topics: Optional[List[str]] = None,
                    output_format: str = TEXT) -> str:

        def compute():
            interactions = self.interactions.get_recent_interactions(user, days, limit, topics)
            return {'user': user, 'interactions': [interaction.to_dict() for interaction in interactions]}

        def to_text(data):
            if not data['interactions']:
                return f'No interactions for "{user}" in the last {days} days.'
            return '\n'.join([f'Recent interactions for "{user}":'] + _interaction_lines(data['interactions']))

        return self._run('interaction_context', 'Interaction context', output_format, compute, to_text)

    def find_related(self,
                     topics: Optional[List[str]] = None,
                     entities: Optional[List[str]] = None,
                     user: Optional[str] = None,
                     limit: int = 5,
                     window_days: Optional[int] = None,
                     output_format: str = TEXT) -> str:

        def compute():
            interactions = self.interactions.find_related(topics, entities, user, limit, window_days)
            return {'interactions': [interaction.to_dict() for interaction in interactions]}

        def to_text(data):
            if not data['interactions']:
                return 'No related interactions found.'
            return '\n'.join([f"Related interactions ({len(data['interactions'])}):"] + _interaction_lines(data['interactions']))

        return self._run('find_related', 'Related interaction search', output_format, compute, to_text)

    def get_user_profile(self, user: str, output_format: str = TEXT) -> str:

        def compute():
            return self.interactions.get_user_profile(user).to_dict()

        def to_text(data):
            lines = [
                f"User: {data['user']}",
                f"- Interactions: {data['interaction_count']}",
                f"- New profile: {yes_no(data['created_if_missing'])}",
            ]
            if data['favorite_topics']:
                lines.append('- Favourite topics: ' +
                             ', '.join(f"{item['topic']} ({item['count']})" for item in data['favorite_topics']))
            return '\n'.join(lines)

        return self._run('user_profile', 'User profile', output_format, compute, to_text)

    def create_relationship(self,
                            from_id: str,
                            to_id: str,
                            relationship_type: str,
                            properties: Optional[Dict[str, Any]] = None,
                            output_format: str = TEXT) -> str:

        def compute():
            return self.interactions.create_cross_link(from_id, to_id, relationship_type, properties).to_dict()

        def to_text(data):
            if data['created']:
                return f"Created {data['label']} relationship from {data['from_id']} to {data['to_id']}"
            return f"No {data['label']} relationship created: {data['from_id']} or {data['to_id']} not found"

        return self._run('create_relationship', 'Relationship create', output_format, compute, to_text)

    # Analytics

    def get_insights(self,
                     user: Optional[str] = None,
                     days: Optional[int] = None,
                     output_format: str = TEXT) -> str:
        window = self.config.memory.insights_window_days if days is None else days

        def compute():
            return self.analytics.get_insights(user, window).to_dict()

        def to_text(data):
            trends = ', '.join(f"{item['topic']} ({item['count']})" for item in data['trending_topics']) or 'none'
            return '\n'.join([
                f"Insights for {data['user'] or 'all users'} over the last {data['period_days']} days",
                f"- Total interactions: {data['total_interactions']}",
                f"- Intents: {', '.join(data['intents']) or 'none'}",
                f"- Sentiments: {', '.join(data['sentiments']) or 'none'}",
                f"- Distinct topic sets: {data['unique_topic_sets']}",
                f'- Trending topics: {trends}',
            ])

        return self._run('insights', 'Insights', output_format, compute, to_text)

    def get_topic_trends(self,
                         user: Optional[str] = None,
                         days: Optional[int] = None,
                         limit: int = 10,
                         output_format: str = TEXT) -> str:
        window = self.config.memory.insights_window_days if days is None else days

        def compute():
            trends = self.analytics.get_topic_trends(user, window, limit)
            return {'user': user, 'period_days': window, 'topics': [{'topic': t.topic, 'count': t.count} for t in trends]}

        def to_text(data):
            if not data['topics']:
                return f'No topics mentioned in the last {window} days.'
            lines = [f'Top topics over the last {window} days:']
            lines += [f" {index}. {item['topic']} ({item['count']})" for index, item in enumerate(data['topics'], start=1)]
            return '\n'.join(lines)

        return self._run('topic_trends', 'Topic trends', output_format, compute, to_text)

    # Semantic memory

    def memory_store(self,
                     content: str,
                     metadata: Dict[str, Any],
                     collection: Optional[str] = None,
                     output_format: str = TEXT) -> str:

        def compute():
            memory_id = self.memories.store(collection, content, metadata)
            return {'memory_id': memory_id, 'collection': collection or self.config.memory.default_collection}

        def to_text(data):
            return f"Stored memory with ID: {data['memory_id']}\nCollection: {data['collection']}"

        return self._run('memory_store', 'Memory store', output_format, compute, to_text)

    def memory_search(self,
                      query: str,
                      collection: Optional[str] = None,
                      n_results: int = 5,
                      metadata_filter: Optional[Dict[str, Any]] = None,
                      output_format: str = TEXT) -> str:

        def compute():
            hits = self.memories.query(collection, [query], n_results, metadata_filter)[0]
            return {'query': query, 'results': [hit.to_dict() for hit in hits]}

        def to_text(data):
            if not data['results']:
                return f'No memories found for "{query}".'
            lines = [f'Memories for "{query}":']
            for hit in data['results']:
                lines.append(f"  - {hit['id']} (distance {hit['distance']:.4f}): {hit['document']}")
            return '\n'.join(lines)

        return self._run('memory_search', 'Memory search', output_format, compute, to_text)

    def vector_query(self, collection: str, query_texts: List[str], n_results: int = 5, output_format: str = TEXT) -> str:

        def compute():
            results = self.memories.query(collection, query_texts, n_results)
            return {
                'collection': collection,
                'results': [{
                    'query': text,
                    'hits': [hit.to_dict() for hit in hits]
                } for text, hits in zip(query_texts, results)]
            }

        def to_text(data):
            blocks = [f"Vector Search Results from collection \"{data['collection']}\":"]
            for result in data['results']:
                items = [
                    f"  - ID: {hit['id']}\n    Distance: {hit['distance']}\n    Document: {hit['document']}"
                    for hit in result['hits']
                ]
                blocks.append('\n'.join([f"Query \"{result['query']}\":"] + (items or ['  No results'])))
            return '\n\n'.join(blocks)

        return self._run('vector_query', 'Vector query', output_format, compute, to_text)

    def vector_add(self,
                   collection: str,
                   documents: List[str],
                   metadatas: Optional[List[Dict[str, Any]]] = None,
                   ids: Optional[List[str]] = None,
                   output_format: str = TEXT) -> str:

        def compute():
            return {'collection': collection, 'ids': self.memories.add_documents(collection, documents, metadatas, ids)}

        def to_text(data):
            return '\n'.join([
                f"Added {len(data['ids'])} document(s) to collection \"{data['collection']}\"",
                f"- IDs: {', '.join(data['ids'])}",
                f"- Metadata: {'included' if metadatas else 'none'}",
            ])

        return self._run('vector_add', 'Vector add', output_format, compute, to_text)

    # System

    def health(self, output_format: str = TEXT) -> str:

        def compute():
            status = get_health_status(self.interactions.neptune, self.memories.index, self.memories.embed, self.config)
            return {'healthy': all(item.get('healthy', False) for item in status.values()), 'components': status}

        def to_text(data):
            lines = [f"System healthy: {yes_no(data['healthy'])}"]
            for name, status in data['components'].items():
                detail = status.get('error') or status.get('endpoint') or status.get('model', '')
                lines.append(f"- {name}: {'ok' if status.get('healthy') else 'unavailable'} ({detail})")
            return '\n'.join(lines)

        return self._run('health', 'Health check', output_format, compute, to_text)
