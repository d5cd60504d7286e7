# hubapi: booking write authority and webhook reconciliation
