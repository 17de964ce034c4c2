"""
HTML pages served by LocalWeb.

Templates are plain strings; ``{{NAME}}`` markers are filled in a single
regex pass so the CSS and JavaScript braces stay untouched.
"""

import html
import json
import re
from typing import List
from urllib.parse import quote

from directory_tree import DirectoryNode, render_tree_html


PAGE_STYLE = """
    <style>
        :root {
            --bg-color: #f5f6f8;
            --card-color: #ffffff;
            --text-primary: #1f2933;
            --text-secondary: #616e7c;
            --accent-color: #2f6fde;
            --success-color: #2e7d32;
            --error-color: #c62828;
        }
        * { box-sizing: border-box; }
        body {
            margin: 0;
            font-family: system-ui, -apple-system, "Segoe UI", Roboto, Ubuntu, sans-serif;
            background: var(--bg-color);
            color: var(--text-primary);
        }
        .container { max-width: 960px; margin: 0 auto; padding: 24px; }
        header { display: flex; align-items: baseline; justify-content: space-between; }
        header h1 { margin: 0 0 16px 0; font-size: 24px; }
        nav a { margin-left: 16px; color: var(--accent-color); text-decoration: none; }
        .card {
            background: var(--card-color);
            border-radius: 10px;
            padding: 20px;
            box-shadow: 0 4px 16px rgba(0, 0, 0, 0.06);
        }
        pre.tree { margin: 0; font-size: 14px; line-height: 1.5; overflow-x: auto; }
        pre.tree a { text-decoration: none; }
        a.dir { color: var(--accent-color); font-weight: 600; }
        a.file { color: var(--text-primary); }
        .empty { color: var(--text-secondary); }
        .btn {
            display: inline-block;
            padding: 8px 18px;
            border: none;
            border-radius: 6px;
            background: var(--accent-color);
            color: #fff;
            cursor: pointer;
            font-size: 14px;
        }
        .btn:disabled { opacity: 0.5; cursor: default; }
        .folder-tree ul { list-style: none; padding-left: 20px; margin: 0; }
        .folder-tree > ul { padding-left: 0; }
        .folder-tree li { margin: 2px 0; }
        .folder-tree .toggle { display: inline-block; width: 16px; cursor: pointer; }
        .controls { margin-top: 16px; display: flex; gap: 12px; align-items: center; }
        .summary .ok { color: var(--success-color); }
        .summary .failed { color: var(--error-color); }
        #errorLog { color: var(--error-color); font-size: 13px; }
    </style>
"""


BROWSE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>LocalWeb - Shared Files</title>
{{STYLE}}
</head>
<body>
    <div class="container">
        <header>
            <h1>Shared Files</h1>
            <nav><a href="/upload-ui">Upload files</a></nav>
        </header>
        <div class="card">
{{TREE}}
        </div>
    </div>
</body>
</html>
"""


LISTING_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Index of /{{PATH}}</title>
{{STYLE}}
</head>
<body>
    <div class="container">
        <header>
            <h1>Index of /{{PATH}}</h1>
            <nav><a href="{{PARENT}}">Parent directory</a><a href="/">Home</a><a href="/upload-ui">Upload files</a></nav>
        </header>
        <div class="card">
{{TREE}}
        </div>
    </div>
</body>
</html>
"""


UPLOAD_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Upload File - LocalWeb</title>
{{STYLE}}
</head>
<body>
    <div class="container">
        <header>
            <h1>Upload Files</h1>
            <nav><a href="/">Browse files</a></nav>
        </header>
        <div class="card">
            <h3>Destination folder</h3>
            <div class="folder-tree" id="folderTree">Loading folders...</div>

            <div class="controls">
                <input type="file" id="fileInput" multiple>
                <button class="btn" id="uploadBtn" onclick="uploadSelected()">Upload</button>
            </div>

            <div class="summary" id="summary"></div>
            <div id="errorLog"></div>
        </div>
    </div>

    <script>
        const UPLOAD_DIR = {{UPLOAD_DIR}};
        let selectedFolder = '';

        function encodePath(path) {
            return path.split('/').map(encodeURIComponent).join('/');
        }

        function relativeToUploads(path) {
            const prefix = UPLOAD_DIR + '/';
            return path.startsWith(prefix) ? path.slice(prefix.length) : path;
        }

        function folderOption(label, value, checked) {
            const input = document.createElement('input');
            input.type = 'radio';
            input.name = 'folder';
            input.value = value;
            input.checked = checked;
            input.addEventListener('change', () => { selectedFolder = value; });
            const wrapper = document.createElement('label');
            wrapper.appendChild(input);
            wrapper.appendChild(document.createTextNode(' ' + label));
            return wrapper;
        }

        function renderFolders(nodes) {
            const list = document.createElement('ul');
            nodes.filter(node => node.type === 'directory').forEach(node => {
                const item = document.createElement('li');
                const subfolders = (node.children || []).filter(child => child.type === 'directory');
                const toggle = document.createElement('span');
                toggle.className = 'toggle';
                toggle.textContent = subfolders.length ? '▸' : '';
                item.appendChild(toggle);
                item.appendChild(folderOption(node.name, relativeToUploads(node.path), false));
                if (subfolders.length) {
                    const children = renderFolders(subfolders);
                    children.style.display = 'none';
                    toggle.addEventListener('click', () => {
                        const open = children.style.display === 'none';
                        children.style.display = open ? 'block' : 'none';
                        toggle.textContent = open ? '▾' : '▸';
                    });
                    item.appendChild(children);
                }
                list.appendChild(item);
            });
            return list;
        }

        async function loadTree() {
            const container = document.getElementById('folderTree');
            let tree = [];
            try {
                const response = await fetch('/api/directory-tree?path=' + encodeURIComponent(UPLOAD_DIR));
                if (response.ok) {
                    tree = (await response.json()).tree;
                }
            } catch (error) {
                console.error('Error loading directory tree:', error);
            }
            container.innerHTML = '';
            const root = document.createElement('ul');
            const rootItem = document.createElement('li');
            rootItem.appendChild(folderOption(UPLOAD_DIR + '/', '', selectedFolder === ''));
            rootItem.appendChild(renderFolders(tree));
            root.appendChild(rootItem);
            container.appendChild(root);
        }

        async function uploadSelected() {
            const files = Array.from(document.getElementById('fileInput').files);
            const summary = document.getElementById('summary');
            const errorLog = document.getElementById('errorLog');
            if (files.length === 0) {
                alert('Please select at least one file');
                return;
            }

            const button = document.getElementById('uploadBtn');
            button.disabled = true;
            errorLog.innerHTML = '';
            let succeeded = 0;
            let failed = 0;

            for (const file of files) {
                const name = selectedFolder ? selectedFolder + '/' + file.name : file.name;
                summary.textContent = `Uploading ${file.name}...`;
                try {
                    const response = await fetch('/upload/' + encodePath(name), {
                        method: 'PUT',
                        body: file
                    });
                    if (response.status === 201) {
                        succeeded++;
                    } else {
                        failed++;
                        const line = document.createElement('div');
                        line.textContent = `${file.name}: ${await response.text()}`;
                        errorLog.appendChild(line);
                    }
                } catch (error) {
                    failed++;
                    const line = document.createElement('div');
                    line.textContent = `${file.name}: ${error.message}`;
                    errorLog.appendChild(line);
                }
            }

            summary.innerHTML = `<span class="ok">${succeeded} uploaded</span>, ` +
                `<span class="failed">${failed} failed</span>`;
            button.disabled = false;
            document.getElementById('fileInput').value = '';
            loadTree();
        }

        loadTree();
    </script>
</body>
</html>
"""


_MARKER = re.compile(r"\{\{([A-Z_]+)\}\}")


def _fill(template: str, **values: str) -> str:
    # One pass, so filled-in text is never scanned for markers again
    values.setdefault("STYLE", PAGE_STYLE)
    return _MARKER.sub(lambda match: values.get(match.group(1), match.group(0)), template)


def render_browse_page(tree: List[DirectoryNode]) -> str:
    """Browsing page with the whole share tree embedded"""
    return _fill(BROWSE_TEMPLATE, TREE=render_tree_html(tree))


def render_listing_page(rel_path: str, entries: List[DirectoryNode]) -> str:
    """Index page for one directory of the share"""
    rel_path = rel_path.strip('/')
    parent = rel_path.rsplit('/', 1)[0] if '/' in rel_path else ''
    parent_href = '/' + quote(parent, safe='/') + ('/' if parent else '')
    return _fill(
        LISTING_TEMPLATE,
        PATH=html.escape(rel_path),
        PARENT=html.escape(parent_href),
        TREE=render_tree_html(entries),
    )


def render_upload_page(upload_dir: str) -> str:
    """Upload page; the folder picker is loaded client-side from the tree API"""
    # json.dumps keeps the name a valid JS string; '</' must not close the script
    return _fill(UPLOAD_TEMPLATE, UPLOAD_DIR=json.dumps(upload_dir).replace("</", "<\\/"))
