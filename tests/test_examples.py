from pathlib import Path

import pytest

from hostforge_automation.config import load_config
from hostforge_automation.inventory import InventoryLoader
from hostforge_automation.playbook import load_playbook
from hostforge_automation.renderer import Renderer

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"
PLAYBOOKS = ["load_balancer", "deploy_binary", "domain", "scheduler", "certificate_renewal"]


@pytest.fixture(scope="module")
def inventory():
    cfg = load_config(EXAMPLES / "main.conf")
    return InventoryLoader(cfg.inventory_dir).load("production")


@pytest.mark.parametrize("name", PLAYBOOKS)
def test_shipped_playbooks_render_against_sample_inventory(name, inventory) -> None:
    playbook = load_playbook(EXAMPLES / "playbooks" / f"{name}.toml")
    host = inventory.hosts_in_group(playbook.hosts)[0]

    rendered = Renderer().render(playbook, inventory.bindings_for(host))

    assert [op.name for op in rendered]
    assert all("{{" not in op.name for op in rendered)


def test_load_balancer_firewall_order(inventory) -> None:
    playbook = load_playbook(EXAMPLES / "playbooks" / "load_balancer.toml")
    types = [op.type for op in playbook.operations]

    flush = types.index("iptables")
    assert playbook.operations[flush].data["flush"] is True
    assert playbook.operations[flush + 7].data["jump"] == "DROP"


def test_domain_playbook_renders_https_site(inventory) -> None:
    playbook = load_playbook(EXAMPLES / "playbooks" / "domain.toml")
    host = inventory.hosts["lb1"]

    rendered = Renderer().render(playbook, inventory.bindings_for(host))
    https = next(op for op in rendered if op.data.get("src") == "nginx-https.j2")
    cron = next(op for op in rendered if op.type == "cron")

    assert https.data["dest"] == "/etc/nginx/sites-enabled/https-play.example.org"
    assert "ssl_certificate /etc/letsencrypt/live/play.example.org/fullchain.pem;" in https.data["content"]
    assert cron.data["entry"] == "letsencrypt_renewal_play.example.org"
