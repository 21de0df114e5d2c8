"""
Tool descriptions for hierarchical memory operations.

These descriptions are meant to be registered by the host framework as
agent-invocable tools and included in system prompts. Parameter shapes
mirror the keyword arguments accepted by ``MemoryToolkit.execute``.
"""

TOOL_DESCRIPTIONS = {
    "memory_remember": {
        "name": "memory_remember",
        "description": (
            "Store a fact, preference, goal, constraint or event so it can be recalled later. "
            "Use this when the user states something durable about themselves, the project, "
            "or the world. Do NOT use for transient chatter."
        ),
        "parameters": {
            "content": {"type": "string", "description": "The statement to remember.", "required": True},
            "type": {
                "type": "string",
                "enum": ["fact", "preference", "goal", "constraint", "event"],
                "description": "Kind of knowledge; defaults to 'fact'.",
                "required": False,
            },
            "confidence": {
                "type": "number",
                "description": "How certain the statement is, 0-1 (default 0.5).",
                "required": False,
            },
            "entities": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Named things the statement is about; the first one names new themes.",
                "required": False,
            },
            "session_id": {"type": "string", "description": "Conversation identifier.", "required": False},
            "deduplicate": {
                "type": "boolean",
                "description": "Reinforce an identical existing fact instead of storing a copy.",
                "required": False,
            },
        },
        "examples": [
            {"content": "User prefers dark mode", "type": "preference", "confidence": 0.9, "entities": ["User"]},
        ],
    },
    "memory_recall": {
        "name": "memory_recall",
        "description": (
            "Retrieve themes, facts and episodes relevant to a question, top-down from themes to "
            "episodes, within a token budget. Check metrics.uncertain before relying on the result."
        ),
        "parameters": {
            "query": {"type": "string", "description": "Natural language question.", "required": True},
            "max_tokens": {"type": "integer", "description": "Evidence budget (default 4000).", "required": False},
        },
        "examples": [{"query": "postgres preference"}],
    },
    "memory_reflect": {
        "name": "memory_reflect",
        "description": "Find recurring themes and propose SOPs or prompt rules for them.",
        "parameters": {
            "focus": {"type": "string", "description": "Only consider themes matching this text.", "required": False},
        },
        "examples": [{"focus": "deployment"}],
    },
    "memory_introspect": {
        "name": "memory_introspect",
        "description": "Report hierarchy counts, theme coherence, at-risk memories and graph size.",
        "parameters": {},
        "examples": [{}],
    },
    "memory_consolidate": {
        "name": "memory_consolidate",
        "description": (
            "Reorganize memory: 'merge' themes into the first id, 'split' oversized themes, or "
            "'resolve' conflicts among semantic facts."
        ),
        "parameters": {
            "action": {"type": "string", "enum": ["merge", "split", "resolve"], "required": True},
            "target_ids": {"type": "array", "items": {"type": "string"}, "required": False},
        },
        "examples": [{"action": "merge", "target_ids": ["theme-1", "theme-2"]}],
    },
    "memory_status": {
        "name": "memory_status",
        "description": "Show store statistics and how many facts each theme holds.",
        "parameters": {},
        "examples": [{}],
    },
    "memory_evolve": {
        "name": "memory_evolve",
        "description": "Append a rule or SOP to the workspace rules file. Never overwrites existing entries.",
        "parameters": {
            "action": {"type": "string", "enum": ["add_rule", "add_sop"], "required": True},
            "content": {"type": "string", "required": True},
            "reason": {"type": "string", "required": False},
        },
        "examples": [{"action": "add_rule", "content": "Always confirm destructive commands", "reason": "user request"}],
    },
    "memory_forget": {
        "name": "memory_forget",
        "description": (
            "Run the forgetting policy ('sweep', 'cleanup'), inspect it ('stats', 'at_risk'), or act on one "
            "memory ('delete', 'boost', 'predict')."
        ),
        "parameters": {
            "action": {
                "type": "string",
                "enum": ["sweep", "cleanup", "stats", "at_risk", "delete", "boost", "predict"],
                "required": False,
            },
            "threshold": {"type": "number", "required": False},
            "memory_id": {"type": "string", "required": False},
        },
        "examples": [{"action": "sweep", "threshold": 0.3}],
    },
    "memory_reason": {
        "name": "memory_reason",
        "description": "Answer a question by hopping across entity relations and applying inference rules.",
        "parameters": {
            "query": {"type": "string", "required": True},
            "max_hops": {"type": "integer", "description": "Traversal rounds (default 3).", "required": False},
        },
        "examples": [{"query": "What does the user prefer for analytics?", "max_hops": 2}],
    },
    "memory_graph": {
        "name": "memory_graph",
        "description": "Query the knowledge graph: 'stats', 'entities', 'entity', 'related' or 'path'.",
        "parameters": {
            "action": {"type": "string", "enum": ["stats", "entities", "entity", "related", "path"], "required": False},
            "name": {"type": "string", "required": False},
            "target": {"type": "string", "required": False},
            "max_hops": {"type": "integer", "required": False},
            "depth": {"type": "integer", "required": False},
        },
        "examples": [{"action": "path", "name": "Alice", "target": "Acme"}],
    },
}


# Concise single-line descriptions for compact tool lists
TOOL_DESCRIPTIONS_COMPACT = {
    name: tool["description"].split(". ")[0].rstrip(".") + "." for name, tool in TOOL_DESCRIPTIONS.items()
}


# Guidelines for when to use memory operations (for system prompt)
USAGE_GUIDELINES = """
Memory Operation Guidelines:

WHEN TO REMEMBER:
- The user states a preference, goal or constraint
- A durable fact about the project or environment is established
- An event worth referring back to happens

BEFORE ANSWERING FROM MEMORY:
1. Recall first; if metrics.uncertain is true, say so
2. Use reason for questions that connect several entities
3. Resolve conflicts instead of silently picking a side

HOUSEKEEPING:
- Reflect periodically and evolve rules for recurring themes
- Let the forgetting sweep prune stale, low-value memories
"""
