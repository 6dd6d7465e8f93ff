from __future__ import annotations

import copy
from timeit import timeit

from vtcoerce import (
    Omit,
    bool_,
    coerce,
    const,
    field_map,
    field_map_set,
    force_uint,
    int_,
    list_,
    non_empty_string,
    one_of,
    size,
    string,
    string_map,
    strict_field_map,
    stringified,
    time,
    time_duration,
    uint,
    url,
    uuid,
)

N = 1000

constraints_schema = strict_field_map(
    {
        "arch": one_of(const("amd64"), const("arm64"), const("s390x")),
        "cores": uint,
        "mem": size,
        "root-disk": size,
        "tags": list_(non_empty_string("tag")),
    },
    {"arch": "amd64", "cores": Omit, "mem": Omit, "root-disk": Omit, "tags": []},
)

machine_schema = field_map(
    {
        "id": uuid,
        "series": non_empty_string("series"),
        "constraints": constraints_schema,
        "started": time,
        "placement": string,
    },
    {"placement": "", "started": ""},
)

charm_origin_schema = field_map_set(
    "source",
    [
        field_map(
            {
                "source": const("charm-hub"),
                "channel": non_empty_string("channel"),
                "revision": force_uint,
            },
            {"revision": Omit},
        ),
        field_map(
            {"source": const("local"), "path": non_empty_string("path")},
        ),
    ],
)

application_schema = field_map(
    {
        "charm": non_empty_string("charm"),
        "origin": charm_origin_schema,
        "num-units": int_,
        "expose": bool_,
        "options": string_map(stringified()),
        "update-status-hook-interval": time_duration,
        "to": list_(string),
    },
    {"expose": False, "options": {}, "update-status-hook-interval": "5m", "to": []},
)

model_schema = strict_field_map(
    {
        "name": non_empty_string("model name"),
        "controller": url,
        "machines": string_map(machine_schema),
        "applications": string_map(application_schema),
    },
)

machines = {}
for i in range(50):
    machines[str(i)] = {
        "id": f"6216dfc3-6e82-408f-9f74-{i:012x}",
        "series": "jammy",
        "constraints": {
            "arch": "arm64" if i % 3 == 0 else "amd64",
            "cores": str(2 + i % 8),
            "mem": f"{4 + i % 4}G",
            "root-disk": "40G",
            "tags": ["virtual", f"rack-{i % 5}"],
        },
        "started": "2016-10-09T12:34:56.123456789Z",
    }

applications = {}
for i in range(20):
    applications[f"app-{i}"] = {
        "charm": f"ch:app-{i}",
        "origin": (
            {"source": "charm-hub", "channel": "latest/stable", "revision": "42"}
            if i % 2 == 0
            else {"source": "local", "path": f"./charms/app-{i}"}
        ),
        "num-units": str(1 + i % 3),
        "expose": "true" if i % 4 == 0 else False,
        "options": {"debug": True, "port": 8080 + i, "ratio": 0.25, "name": "x"},
        "to": [str(j) for j in range(i % 5)],
    }

model_object = {
    "name": "production",
    "controller": "https://controller.example.com:17070/api",
    "machines": machines,
    "applications": applications,
}

coerce(model_schema, model_object, ["model"])
t1 = timeit("coerce(model_schema, model_object)", number=N, globals=globals())
print("")
print(
    f"Coercing a model with {len(machines)} machines and {len(applications)}"
    f" applications takes {1000*t1/N:.2f} ms"
)

bad_object = copy.deepcopy(model_object)
bad_object["machines"]["49"]["constraints"]["cores"] = "-1"
t2 = timeit(
    """
try:
    coerce(model_schema, bad_object)
except Exception:
    pass
""",
    number=N,
    globals=globals(),
)
print("")
print(f"Rejecting a model with a bad last machine takes {1000*t2/N:.2f} ms")
