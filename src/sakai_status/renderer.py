"""Text renderings of the management bean registry."""

from typing import TextIO

import structlog

from sakai_status.errors import StatusError
from sakai_status.mbeans import BeanRegistry, ObjectName
from sakai_status.models import BeanDescriptor

logger = structlog.get_logger(__name__)

BEAN_SEPARATOR = "\n-----------------------------\n\n"


def sorted_beans(registry: BeanRegistry, pattern: str | None = None) -> list[ObjectName]:
    """Matching bean names in canonical order."""
    return sorted(registry.find_beans(pattern))


def render_bean_names(registry: BeanRegistry, out: TextIO) -> None:
    """One bean name per line."""
    for name in sorted_beans(registry):
        out.write(f"{name}\n")


def render_domains(registry: BeanRegistry, out: TextIO) -> None:
    out.write(f"default: {registry.default_domain}\n")
    out.write("domains:\n")
    for domain in registry.domains():
        out.write(f"  - {domain}\n")


def describe_or_skip(registry: BeanRegistry, name: ObjectName) -> BeanDescriptor | None:
    """
    Describe a bean, or return None if it went away since it was listed.

    Beans are unregistered concurrently with report rendering, so a name
    found a moment ago may no longer resolve.
    """
    try:
        return registry.get_descriptor(name)
    except StatusError as e:
        logger.warning("bean_describe_failed", bean=str(name), error=str(e))
        return None


def render_attribute_table(
    registry: BeanRegistry,
    name: ObjectName,
    descriptor: BeanDescriptor,
    out: TextIO,
    indent: str = "",
) -> None:
    """
    Write ``name,type,description,value`` for every attribute.

    A failing read is logged and its row left out; the remaining attributes
    are still written.
    """
    for info in descriptor.attributes:
        try:
            value = registry.get_attribute(name, info.name)
        except Exception as e:
            logger.warning(
                "attribute_read_failed",
                bean=str(name),
                attribute=info.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            continue
        out.write(f"{indent}{info.name},{info.type},{info.description},{value}\n")


def render_operation_table(descriptor: BeanDescriptor, out: TextIO, indent: str = "  ") -> None:
    """Write ``returnType,name(type param,...),description`` for every operation."""
    for op in descriptor.operations:
        params = "".join(f"{p.type} {p.name}," for p in op.parameters)
        out.write(f"{indent}{op.return_type},{op.name}({params}),{op.description}\n")


def render_bean_details(registry: BeanRegistry, out: TextIO) -> None:
    """Attributes and operations of every bean, in name order."""
    for name in sorted_beans(registry):
        descriptor = describe_or_skip(registry, name)
        if descriptor is None:
            continue
        out.write(f"{name}\n")
        render_attribute_table(registry, name, descriptor, out, indent="  ")
        out.write("\n")
        render_operation_table(descriptor, out)
        out.write(BEAN_SEPARATOR)
