"""Rendered text for proxy site files and operator scripts."""

from typing import List

from .config import DeployConfig

MARKER_PREFIX = "# managed by portfolio-deploy:"
PROVISIONAL = "provisional"
FINAL = "final"


def marker(state: str) -> str:
    return f"{MARKER_PREFIX} {state}"


def _names(config: DeployConfig) -> str:
    return " ".join(config.server_names)


def provisional_site(config: DeployConfig) -> str:
    """Plain HTTP site, no redirect, so domain-validation challenges can be served."""
    return f"""{marker(PROVISIONAL)}
server {{
    listen 80;
    listen [::]:80;
    server_name {_names(config)};

    root {config.web_root};
    index index.html;

    location ^~ /.well-known/acme-challenge/ {{
        allow all;
    }}

    location / {{
        try_files $uri $uri/ /index.html;
    }}

    location ~ /\\. {{
        deny all;
    }}
}}
"""


def final_site(config: DeployConfig) -> str:
    """HTTPS site bound to the issued certificate with an HTTP redirect."""
    cert_dir = config.certificate_dir
    return f"""{marker(FINAL)}
server {{
    listen 80;
    listen [::]:80;
    server_name {_names(config)};

    location ^~ /.well-known/acme-challenge/ {{
        root {config.web_root};
    }}

    location / {{
        return 301 https://{config.domain}$request_uri;
    }}
}}

server {{
    listen 443 ssl http2;
    listen [::]:443 ssl http2;
    server_name {_names(config)};

    ssl_certificate {cert_dir}/fullchain.pem;
    ssl_certificate_key {cert_dir}/privkey.pem;
    include {config.letsencrypt_dir}/options-ssl-nginx.conf;
    ssl_dhparam {config.letsencrypt_dir}/ssl-dhparams.pem;

    add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;
    add_header X-Content-Type-Options "nosniff" always;
    add_header X-Frame-Options "SAMEORIGIN" always;

    root {config.web_root};
    index index.html;

    gzip on;
    gzip_types text/css application/javascript image/svg+xml application/json;

    location ~* \\.(?:css|js|woff2?|png|jpe?g|gif|svg|ico|webp)$ {{
        expires 30d;
        add_header Cache-Control "public, immutable";
    }}

    location / {{
        try_files $uri $uri/ /index.html;
    }}

    location ~ /\\. {{
        deny all;
    }}
}}
"""


def adapt_project_site(config: DeployConfig, text: str) -> str:
    """Point every root directive of a project-supplied config at the serving root."""
    lines: List[str] = [marker(FINAL)]
    for line in text.splitlines():
        if line.startswith(MARKER_PREFIX):
            continue
        stripped = line.lstrip()
        if stripped.startswith("root ") and stripped.rstrip().endswith(";"):
            indent = line[: len(line) - len(stripped)]
            line = f"{indent}root {config.web_root};"
        lines.append(line)
    return "\n".join(lines) + "\n"


def update_script(config: DeployConfig) -> str:
    return f"""#!/bin/bash
set -e
GREEN='\\033[0;32m'
YELLOW='\\033[1;33m'
NC='\\033[0m'

echo -e "${{GREEN}}Updating Portfolio...${{NC}}\\n"

cd {config.project_dir}

echo -e "${{YELLOW}}Building project...${{NC}}"
npm run build

echo -e "${{YELLOW}}Deploying to web root...${{NC}}"
sudo mkdir -p {config.web_root}
sudo cp -r {config.artifact_dir}/. {config.web_root}/
sudo chown -R {config.web_user}:{config.web_user} {config.web_root}
sudo chmod -R u=rwX,go=rX {config.web_root}

echo -e "${{YELLOW}}Reloading Nginx...${{NC}}"
sudo nginx -t
sudo systemctl reload nginx

echo -e "\\n${{GREEN}}Portfolio updated successfully!${{NC}}"
echo -e "Visit: ${{GREEN}}https://{config.domain}${{NC}}\\n"
"""


def status_script(config: DeployConfig) -> str:
    return f"""#!/bin/bash
YELLOW='\\033[1;33m'
NC='\\033[0m'

echo -e "${{YELLOW}}Portfolio Status Check${{NC}}\\n"

echo "Nginx Status:"
sudo systemctl status nginx --no-pager | grep "Active:" | sed 's/^/  /'

echo -e "\\nSSL Certificate:"
sudo certbot certificates 2>/dev/null | grep -A 5 "{config.domain}" | sed 's/^/  /'

echo -e "\\nRenewal Timer:"
systemctl list-timers certbot.timer --no-pager 2>/dev/null | sed 's/^/  /'

echo -e "\\nFirewall Status:"
sudo ufw status | grep -E "80|443|Status" | sed 's/^/  /'

echo -e "\\nDisk Usage (Web Root):"
du -sh {config.web_root} 2>/dev/null | sed 's/^/  /'

echo -e "\\nRecent Nginx Access (last 5):"
sudo tail -n 5 /var/log/nginx/access.log 2>/dev/null | sed 's/^/  /' || echo "  No access logs found"

echo -e "\\nRecent Nginx Errors (last 5):"
sudo tail -n 5 /var/log/nginx/error.log 2>/dev/null | sed 's/^/  /' || echo "  No error logs found"

echo -e "\\nDeployment Log (last 5):"
sudo tail -n 5 {config.log_file} 2>/dev/null | sed 's/^/  /' || echo "  No deployment log found"
"""
