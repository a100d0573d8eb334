"""
Tests for the revision ledger
"""

import json
import threading

from planrev_core.ledger import LedgerEntry, RevisionLedger


class TestRevisionLedger:
    """Tests for RevisionLedger."""

    def test_in_memory(self):
        """Test entries are numbered in append order."""
        ledger = RevisionLedger()
        ledger.record("plan", detail="3 forward")
        ledger.record("accepted", "budget", 2, "sha256:abc")

        entries = ledger.get_all()
        assert [e.seq for e in entries] == [1, 2]
        assert entries[1].section_id == "budget"
        assert entries[1].timestamp
        assert len(ledger) == 2

    def test_filter(self):
        """Test filtering by event and section."""
        ledger = RevisionLedger()
        ledger.record("accepted", "budget", 2)
        ledger.record("blocked", "timeline", 1)
        ledger.record("accepted", "timeline", 2)

        assert [e.section_id for e in ledger.filter(event="accepted")] == ["budget", "timeline"]
        assert [e.event for e in ledger.filter(section_id="timeline")] == ["blocked", "accepted"]
        assert ledger.filter(since="9999") == []

    def test_file_backed_reload(self, temp_dir):
        """Test a JSONL ledger is reloaded and continues numbering."""
        path = temp_dir / "ledger.jsonl"
        first = RevisionLedger(path)
        first.record("accepted", "budget", 2, data={"soft_failures": []})

        second = RevisionLedger(path)
        entry = second.record("reviewed", "strategy", 1)

        assert entry.seq == 2
        assert [e.event for e in second.get_all()] == ["accepted", "reviewed"]
        lines = path.read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[0])["section_id"] == "budget"

    def test_malformed_lines_skipped(self, temp_dir):
        """Test broken lines do not prevent loading."""
        path = temp_dir / "ledger.jsonl"
        good = LedgerEntry(seq=5, event="plan").to_json_line()
        path.write_text("not json\n" + good + "\n\n", encoding="utf-8")

        ledger = RevisionLedger(path)

        assert len(ledger) == 1
        assert ledger.record("plan").seq == 6

    def test_concurrent_records(self):
        """Test sequence numbers stay unique across threads."""
        ledger = RevisionLedger()

        def worker():
            for _ in range(50):
                ledger.record("plan")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(e.seq for e in ledger.get_all()) == list(range(1, 201))
