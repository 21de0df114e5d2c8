def test_import_package():
    import memoryx

    assert memoryx.__version__


def test_import_runtime_memory():
    from memoryx.runtime.memory import (  # noqa: F401
        KnowledgeGraph,
        MemoryEngine,
        MemoryToolkit,
        MultiHopReasoner,
        SQLiteMemoryStore,
        VectorIndex,
    )


def test_import_config_and_logging():
    from memoryx.config import MemoryXConfig, load_config  # noqa: F401
    from memoryx.logging import EventLog, LogManager  # noqa: F401
    from memoryx.runtime.memory.templates.memory_tool_descriptions import TOOL_DESCRIPTIONS  # noqa: F401
