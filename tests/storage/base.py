import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from db_chat_agent.storage import ConversationDb, ConversationStore

PROJECT_ROOT = Path(__file__).resolve().parents[2]


class ConversationStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"{self.__class__.__name__.lower()}-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        self._db = ConversationDb(str(self._tmp_dir / "conversations.db"))
        self._store = ConversationStore(self._db)

    def tearDown(self) -> None:
        self._db.close()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)
