import yaml
from pydantic import ValidationError, BaseModel, ConfigDict
from yaml.nodes import ScalarNode, MappingNode
from typing import Dict, Any, Type, TypeVar
from common import SetupError


class ConfigError(SetupError):
    pass


class StrictBaseModel(BaseModel, frozen=True):
    model_config = ConfigDict(extra="forbid")


class LineNumberLoader(yaml.SafeLoader):
    def construct_mapping(self, node: MappingNode, deep: bool = False) -> Any:
        mapping = {}
        for key_node, value_node in node.value:
            key = self.construct_object(key_node, deep=deep)  # type: ignore
            value = self.construct_object(value_node, deep=deep)  # type: ignore
            mapping[key] = value
            if isinstance(key_node, ScalarNode):
                # yaml lines are 0-based
                mapping[f"_line_{key}"] = key_node.start_mark.line + 1
        return mapping


def _is_line_key(key: Any) -> bool:
    return isinstance(key, str) and key.startswith("_line_")


def extract_field_lines(data: Dict[str, Any], prefix: str = "") -> Dict[str, int]:
    field_lines = {}
    for key, value in data.items():
        if _is_line_key(key):
            continue
        full_key = f"{prefix}.{key}" if prefix else str(key)
        line_key = f"_line_{key}"
        if line_key in data:
            field_lines[full_key] = data[line_key]
        if isinstance(value, dict):
            field_lines.update(extract_field_lines(value, prefix=full_key))
        elif isinstance(value, list):
            for idx, item in enumerate(value):
                if isinstance(item, dict):
                    field_lines.update(extract_field_lines(item, prefix=f"{full_key}.{idx}"))
    return field_lines


def clean_yaml_data(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: clean_yaml_data(v) for k, v in data.items() if not _is_line_key(k)}
    if isinstance(data, list):
        return [clean_yaml_data(v) for v in data]
    return data


T = TypeVar('T', bound=BaseModel)


def loads(yaml_str: str, cls: Type[T], source: str = "<string>") -> T:
    parsed_data_with_lines = yaml.load(yaml_str, Loader=LineNumberLoader) or {}
    if not isinstance(parsed_data_with_lines, dict):
        raise ConfigError(f"{source}: expected a mapping at the top level")
    field_lines = extract_field_lines(parsed_data_with_lines)
    parsed_data_clean = clean_yaml_data(parsed_data_with_lines)

    try:
        return cls(**parsed_data_clean)
    except ValidationError as e:
        msgs = []
        for err in e.errors():
            field = ".".join(str(x) for x in err['loc'])
            line = field_lines.get(field, "Unknown")
            msgs.append(f"Error in field '{field}': {err['msg']} (Line {line})")
        raise ConfigError(f"{source}: " + "; ".join(msgs)) from e


def load(path: str, cls: Type[T]) -> T:
    with open(path) as f:
        yaml_str = f.read()
    return loads(yaml_str, cls, source=path)
