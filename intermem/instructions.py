"""
Server instructions shown to agents connecting over MCP.
"""

SERVER_INSTRUCTIONS = """
Interaction memory for conversational agents. Follow this protocol on every turn:

1. cognitive_recall(user, input) BEFORE answering.
   Returns the user's interaction count, recent interactions, the last
   interaction id and topics suggested from the input.

2. cognitive_persist(user, input, output, ...) AFTER answering.
   Pass the last interaction id from recall as previous_interaction_id so the
   conversation stays chained. Set store_memory with memory_content to keep a
   durable insight, fact, preference, pattern or connection.

3. cognitive_validate(interaction_id) with the id returned by persist.
   Confirms the interaction exists and is linked to its user.

Other tools:
- interaction_get_context / interaction_find_related: read past interactions
- graph_create_relationship: link two interactions (RELATED_TO, CONTRADICTS,
  BUILDS_ON, REFERENCES, SIMILAR_TO)
- memory_store / memory_search / vector_query / vector_add: semantic memory
- analytics_get_insights / analytics_topic_trends: usage summaries

Every response carries a Request ID. Pass output_format="json" for structured output.
""".strip()
