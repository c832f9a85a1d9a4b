"""Practice agenda: recurring sessions, calendar reconciliation and billing."""
