import pytest

from ciflow import ConfigError, job, matrix
from ciflow.matrix import expand, instance_id, matrix_size


def noop(ctx):
    pass


def test_batch_axes_expand_to_two_instances():
    instances = expand(job("test", body=noop, matrix=matrix(batch=[0, 1], total_batch=[2])))

    assert [i.matrix for i in instances] == [
        {"batch": 0, "total_batch": 2},
        {"batch": 1, "total_batch": 2},
    ]
    assert [i.id for i in instances] == [
        "test[batch=0,total_batch=2]",
        "test[batch=1,total_batch=2]",
    ]


def test_no_matrix_gives_one_instance():
    (inst,) = expand(job("lint", body=noop))
    assert inst.id == "lint"
    assert inst.matrix == {}


def test_cartesian_product_keeps_axis_and_value_order():
    instances = expand(job("t", body=noop, matrix={"os": ["linux", "mac"], "py": ["3.11", "3.12"]}))
    assert [(i.matrix["os"], i.matrix["py"]) for i in instances] == [
        ("linux", "3.11"),
        ("linux", "3.12"),
        ("mac", "3.11"),
        ("mac", "3.12"),
    ]
    assert matrix_size(instances[0].job) == 4


def test_empty_axis_is_rejected():
    with pytest.raises(ConfigError, match="axis 'batch' is empty"):
        expand(job("test", body=noop, matrix={"batch": []}))


def test_string_axis_is_rejected():
    j = job("test", body=noop)
    j.matrix = {"batch": "01"}
    with pytest.raises(ConfigError, match="sequence of values"):
        expand(j)


def test_repeated_values_are_rejected():
    with pytest.raises(ConfigError, match="duplicate instance"):
        expand(job("test", body=noop, matrix={"batch": [0, 0]}))


def test_instance_id_format():
    assert instance_id("x", ()) == "x"
    assert instance_id("x", (("a", 1),)) == "x[a=1]"
