"""YAML parsing that keeps line numbers for resources."""

from typing import Any, Optional, Sequence, Tuple, Type, Union

import yaml

from envpolicy.loaders.resources import ConfigLoadError
from envpolicy.security import SecurityError, validate_document_depth

PathKey = Union[str, int]


def load_yaml_document(
    text: str, source: str, error_cls: Type[ConfigLoadError] = ConfigLoadError
) -> Tuple[Any, Optional[yaml.Node]]:
    """Parse a single YAML document, returning (data, node tree).

    The node tree is only used to recover line numbers; data is what
    safe_load produces. An empty document yields (None, None).

    Raises:
        error_cls: On YAML syntax errors or excessive nesting
    """
    try:
        node = yaml.compose(text, Loader=yaml.SafeLoader)
        data = yaml.safe_load(text)
        validate_document_depth(data)
    except yaml.YAMLError as e:
        raise error_cls(f"Invalid YAML in {source}: {e}")
    except SecurityError as e:
        raise error_cls(f"Security validation failed for {source}: {e}")
    return data, node


def find_node(root: Optional[yaml.Node], path: Sequence[PathKey]) -> Optional[yaml.Node]:
    """Walk a composed node tree by mapping keys and sequence indices."""
    current = root
    for key in path:
        if current is None:
            return None
        if isinstance(key, int):
            if not isinstance(current, yaml.SequenceNode) or key >= len(current.value):
                return None
            current = current.value[key]
        else:
            if not isinstance(current, yaml.MappingNode):
                return None
            match = None
            for key_node, value_node in current.value:
                if isinstance(key_node, yaml.ScalarNode) and key_node.value == key:
                    match = value_node
                    break
            current = match
    return current


def line_of(root: Optional[yaml.Node], path: Sequence[PathKey]) -> Optional[int]:
    """1-based line of the node at path, or None when it cannot be located."""
    node = find_node(root, path)
    if node is None:
        return None
    return node.start_mark.line + 1
