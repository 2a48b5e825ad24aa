REGISTRATION_MESSAGE = (
    "User has not been registered on CAT service. "
    "User registration is a prerequisite for accessing this API resource."
)


def _profile(name="foo", surname="foo", email="foo@admin.grnet.gr", orcid_id=None):
    body = {"name": name, "surname": surname, "email": email}
    if orcid_id is not None:
        body["orcid_id"] = orcid_id
    return body


def test_invalid_token_rejected(client):
    r = client.post("/v1/users/register", headers={"Authorization": "Bearer invalidToken"})
    assert r.status_code == 401
    assert r.json() == {"code": 401, "message": "User has not been authenticated."}


def test_missing_token_rejected(client):
    r = client.get("/v1/users/profile")
    assert r.status_code == 401


def test_expired_token_rejected(client, token):
    expired = token("alice", expires_in=-60)
    r = client.post("/v1/users/register", headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401


def test_token_without_user_identifier(client):
    import jwt
    raw = jwt.encode({"sub": "x"}, "test-secret", algorithm="HS256")
    r = client.post("/v1/users/register", headers={"Authorization": f"Bearer {raw}"})
    assert r.status_code == 400
    assert r.json()["message"] == "The User's unique identifier {voperson_id} is missing from the access token."


def test_register_and_conflict(client, headers):
    r = client.post("/v1/users/register", headers=headers("alice"))
    assert r.status_code == 201
    body = r.json()
    assert body["id"] == "alice"
    assert body["user_type"] == "Identified"
    assert body["registered_on"]

    again = client.post("/v1/users/register", headers=headers("alice"))
    assert again.status_code == 409
    assert again.json()["message"] == "User already exists in the database."


def test_unregistered_user_requests_profile(client, headers):
    r = client.get("/v1/users/profile", headers=headers("bob"))
    assert r.status_code == 403
    assert r.json()["message"] == REGISTRATION_MESSAGE


def test_admin_profile_type(client, headers, register):
    register("admin", roles=["admin"])
    r = client.get("/v1/users/profile", headers=headers("admin", ["admin"]))
    assert r.status_code == 200
    assert r.json()["user_type"] == "Admin"


def test_update_profile_body_is_empty(client, headers, register):
    register("alice")
    r = client.put("/v1/users/profile", headers={**headers("alice"), "Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["message"] == "The request body is empty."


def test_update_profile_required_fields(client, headers, register):
    register("alice")
    cases = [
        ({"surname": "foo", "email": "foo@admin.grnet.gr"}, "name may not be empty."),
        ({"name": "foo", "email": "foo@admin.grnet.gr"}, "surname may not be empty."),
        ({"name": "foo", "surname": "foo"}, "email may not be empty."),
        (_profile(email="foo.foo"), "Please provide a valid email address."),
        (_profile(orcid_id="la-la-la-la"), "Not valid structure of the ORCID Identifier."),
    ]
    for body, message in cases:
        r = client.put("/v1/users/profile", json=body, headers=headers("alice"))
        assert r.status_code == 400, body
        assert r.json() == {"code": 400, "message": message}


def test_update_profile_without_orcid(client, headers, register):
    register("alice")
    r = client.put("/v1/users/profile", json=_profile(), headers=headers("alice"))
    assert r.status_code == 200
    body = r.json()
    assert body["email"] == "foo@admin.grnet.gr"
    assert body["orcid_id"] is None
    assert body["updated_on"]


def test_update_profile_with_orcid(client, headers, register):
    register("alice")
    r = client.put("/v1/users/profile", json=_profile(orcid_id="0000-0002-1825-0097"), headers=headers("alice"))
    assert r.status_code == 200
    assert r.json()["orcid_id"] == "0000-0002-1825-0097"

    profile = client.get("/v1/users/profile", headers=headers("alice")).json()
    assert profile["name"] == "foo"
    assert profile["orcid_id"] == "0000-0002-1825-0097"


def test_admin_lists_users(client, headers, register):
    register("alice")
    register("admin", roles=["admin"])
    r = client.get("/v1/admin/users", headers=headers("admin", ["admin"]))
    assert r.status_code == 200
    page = r.json()
    assert page["total_elements"] == 2
    assert page["number_of_page"] == 1
    assert page["total_pages"] == 1
    assert {u["id"] for u in page["content"]} == {"alice", "admin"}
    assert {u["id"]: u["user_type"] for u in page["content"]} == {"alice": "Identified", "admin": "Admin"}
    assert [link["rel"] for link in page["links"]] == ["first", "last"]


def test_list_users_requires_admin(client, headers, register):
    register("alice")
    r = client.get("/v1/admin/users", headers=headers("alice"))
    assert r.status_code == 403
    assert r.json()["message"] == "You do not have permission to access this resource."


def test_list_users_bad_page(client, headers, register):
    register("admin", roles=["admin"])
    r = client.get("/v1/admin/users", params={"page": 0}, headers=headers("admin", ["admin"]))
    assert r.status_code == 400
    assert r.json()["message"] == "Page number must be >= 1."
    r = client.get("/v1/admin/users", params={"size": 500}, headers=headers("admin", ["admin"]))
    assert r.status_code == 400
    assert r.json()["message"] == "Page size must be between 1 and 100."


def test_request_id_header_exists(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert "X-Request-ID" in r.headers


def test_user_type_matches_across_routes(client, headers, register):
    register("admin", roles=["admin"])
    register("carol")
    # carol's role arrives with a later token from the identity provider
    profile = client.get("/v1/users/profile", headers=headers("carol", ["validated"])).json()
    assert profile["user_type"] == "Validated"

    page = client.get("/v1/admin/users", headers=headers("admin", ["admin"])).json()
    listed = {u["id"]: u["user_type"] for u in page["content"]}
    assert listed == {"admin": "Admin", "carol": "Validated"}


def test_update_profile_malformed_json(client, headers, register):
    register("alice")
    r = client.put(
        "/v1/users/profile",
        content="{\"name\": \"foo\",",
        headers={**headers("alice"), "Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json() == {"code": 400, "message": "The request body is not valid JSON."}
