import json
from sqlalchemy.types import TypeDecorator, TEXT


class JSONEncodedData(TypeDecorator):
    """テストケースの data ブロブ（前提条件・BDDシナリオ）をJSON文字列として保存する型"""
    impl = TEXT
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if not value:
            return None
        return json.dumps(value, ensure_ascii=False)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            loaded = json.loads(value)
        except json.JSONDecodeError:
            return None
        return loaded if isinstance(loaded, dict) else None
