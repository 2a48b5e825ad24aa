def test_template_by_type_and_actor(client, headers, register):
    register("alice")
    r = client.get("/v1/templates/by-type/1/by-actor/6", headers=headers("alice"))
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == 1
    assert body["type_id"] == 1
    assert body["type_name"] == "eosc pid policy"
    assert body["actor_name"] == "PID Owner"
    doc = body["template_doc"]
    assert doc["actor"] == {"id": 6, "name": "PID Owner"}
    assert doc["principles"]


def test_latest_template_version_is_returned(client, headers, register):
    register("alice")
    r = client.get("/v1/templates/by-type/1/by-actor/9", headers=headers("alice"))
    assert r.status_code == 200
    body = r.json()
    assert body["version"] == 2
    names = [p["name"] for p in body["template_doc"]["principles"]]
    assert names == ["Governance", "Persistence", "Resolution"]


def test_template_lookup_not_found(client, headers, register):
    register("alice")
    cases = [
        ("/v1/templates/by-type/7/by-actor/6", "There is no Assessment Type with the following id: 7"),
        ("/v1/templates/by-type/1/by-actor/100", "There is no Actor with the following id: 100"),
        ("/v1/templates/by-type/1/by-actor/2", "There is no Template for assessment type 1 and actor 2."),
        ("/v1/templates/42", "There is no Template with the following id: 42"),
    ]
    for url, message in cases:
        r = client.get(url, headers=headers("alice"))
        assert r.status_code == 404, url
        assert r.json() == {"code": 404, "message": message}


def test_template_by_id(client, headers, register):
    register("alice")
    r = client.get("/v1/templates/2", headers=headers("alice"))
    assert r.status_code == 200
    assert r.json()["actor_id"] == 3


def test_list_templates(client, headers, register):
    register("alice")
    r = client.get("/v1/templates", headers=headers("alice"))
    assert r.status_code == 200
    page = r.json()
    assert page["total_elements"] == 3
    assert {t["actor_id"] for t in page["content"]} == {3, 6, 9}

    second = client.get("/v1/templates", params={"page": 2, "size": 2}, headers=headers("alice")).json()
    assert second["number_of_page"] == 2
    assert second["size_of_page"] == 1
    assert [link["rel"] for link in second["links"]] == ["first", "prev", "last"]


def test_actors_and_assessment_types(client, headers, register):
    register("alice")
    actors = client.get("/v1/actors", headers=headers("alice")).json()
    assert len(actors) == 9
    assert {"id": 6, "name": "PID Owner"}.items() <= actors[5].items()

    types = client.get("/v1/templates/assessment-types", headers=headers("alice")).json()
    assert [t["name"] for t in types] == ["eosc pid policy"]


def test_templates_require_registration(client, headers):
    r = client.get("/v1/templates", headers=headers("nobody"))
    assert r.status_code == 403
