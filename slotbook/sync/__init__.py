from slotbook.sync.outbox import SpreadsheetSink, SyncMessage, SyncOutbox

__all__ = ["SpreadsheetSink", "SyncMessage", "SyncOutbox"]
