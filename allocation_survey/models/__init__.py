from allocation_survey.models.kv_entry import KVEntry

__all__ = ["KVEntry"]
