"""Tests for the bean registry text renderings."""

import io

from sakai_status.renderer import (
    BEAN_SEPARATOR,
    render_attribute_table,
    render_bean_details,
    render_bean_names,
    render_domains,
    render_operation_table,
)

from conftest import FailingBean, SampleBean


def render(func, *args) -> str:
    out = io.StringIO()
    func(*args, out)
    return out.getvalue()


def test_bean_names_one_per_line_sorted(beans):
    beans.register("zeta:type=One", SampleBean())
    beans.register("alpha:type=Two,name=b", SampleBean())
    beans.register("alpha:type=Two,name=a", SampleBean())

    assert render(render_bean_names, beans) == (
        "alpha:name=a,type=Two\nalpha:name=b,type=Two\nzeta:type=One\n"
    )


def test_bean_names_are_deterministic(beans):
    for i in range(20):
        beans.register(f"d:type=T,name=n{i}", SampleBean())
    assert render(render_bean_names, beans) == render(render_bean_names, beans)


def test_empty_registry_renders_nothing(beans):
    assert render(render_bean_names, beans) == ""
    assert render(render_bean_details, beans) == ""


def test_domains(beans):
    beans.register("zeta:type=One", SampleBean())
    beans.register("alpha:type=One", SampleBean())
    assert render(render_domains, beans) == (
        "default: DefaultDomain\ndomains:\n  - alpha\n  - zeta\n"
    )


def test_attribute_table(beans):
    name = beans.register("a:type=One", SampleBean(size=5))
    descriptor = beans.get_descriptor(name)
    assert render(render_attribute_table, beans, name, descriptor) == (
        "Size,int,Number of things,5\nLabel,str,Display label,sample\n"
    )


def test_failing_attribute_row_is_omitted(beans):
    name = beans.register("a:type=Broken", FailingBean())
    descriptor = beans.get_descriptor(name)
    assert render(render_attribute_table, beans, name, descriptor) == "Good,str,Always readable,ok\n"


def test_operation_table(beans):
    name = beans.register("a:type=One", SampleBean())
    descriptor = beans.get_descriptor(name)
    assert render(render_operation_table, descriptor) == (
        "  int,resize(int size,bool force,),Resize the sample\n"
    )


def test_bean_details_layout(beans):
    beans.register("a:type=One", SampleBean(size=1))
    beans.register("b:type=Broken", FailingBean())

    expected = (
        "a:type=One\n"
        "  Size,int,Number of things,1\n"
        "  Label,str,Display label,sample\n"
        "\n"
        "  int,resize(int size,bool force,),Resize the sample\n"
        + BEAN_SEPARATOR
        + "b:type=Broken\n"
        "  Good,str,Always readable,ok\n"
        "\n"
        + BEAN_SEPARATOR
    )
    assert render(render_bean_details, beans) == expected
