"""
tests/
------
Loop AI - Hospital Network Assistant - Test Package
---------------------------------------------------
Test suites for the assistant core, run against mock_data/hospitals.json.

Test Modules:
    - test_schemas.py: records, match result variants, raw row conversion
    - test_city_aliases.py: city equivalence and the alias table
    - test_directory_index.py: atomic generations and reload failure handling
    - test_match_engine.py: token matching, grouping, structured resolution
    - test_disambiguation.py: the MatchResult → response decision table
    - test_tools.py: the directory lookup tools
    - test_session_store.py: turn bound, expiry, LRU capacity, concurrency
    - test_escalation.py: handoff sentinel, notifiers, session clear
    - test_assistant_core.py: the orchestrator-facing facade
    - test_conversation.py: multi-turn chat handling
    - test_agent.py: prompt and LangChain tool surface
    - test_config.py: environment settings

Project: Loop AI - Hospital Network Assistant
"""
