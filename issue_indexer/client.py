"""Config → Elasticsearch 클라이언트

bulk/delete_by_query 호출은 큐가 재시도를 맡는다. 클라이언트 수준 재시도는
노드 장애 조치(다른 노드로 재전송)용이고, 타임아웃은 가장 큰 LARGE 배치 기준으로 잡는다.
"""

from __future__ import annotations

from elasticsearch import Elasticsearch

from .config import Config


def _auth_options(config: Config) -> dict:
    if config.es_api_key:
        return {"api_key": config.es_api_key}
    if config.es_username and config.es_password:
        return {"basic_auth": (config.es_username, config.es_password)}
    return {}


def _check_cluster(config: Config):
    """클러스터(HTTPS) 연결은 fingerprint와 인증 정보가 모두 있어야 한다."""
    if not config.es_fingerprint:
        raise ValueError(
            "es_fingerprint 필수: 클러스터 연결에는 TLS 인증서 fingerprint가 필요합니다."
        )
    if not _auth_options(config):
        raise ValueError(
            "인증 정보 필수: es_api_key 또는 es_username + es_password를 지정하세요."
        )


def build_es_client(config: Config) -> Elasticsearch:
    """
    단일 노드(es_url, HTTP) 또는 클러스터(es_nodes, HTTPS + fingerprint) 클라이언트.

        Config(es_url="http://localhost:9200")
        Config(es_nodes=["https://es01:9200", "https://es02:9200"],
               es_fingerprint="B1:2A:...:CF", es_api_key="...")
    """
    if config.es_nodes:
        _check_cluster(config)

    kwargs: dict = {
        "hosts": config.es_nodes or [config.es_url],
        "request_timeout": config.es_request_timeout,
        "max_retries": config.es_max_retries,
        "retry_on_timeout": config.es_retry_on_timeout,
        **_auth_options(config),
    }
    if config.es_fingerprint:
        kwargs["ssl_assert_fingerprint"] = config.es_fingerprint
        kwargs["verify_certs"] = False

    return Elasticsearch(**kwargs)
