"""Trade journal: ledger, goals, live marks and cloud sync."""
