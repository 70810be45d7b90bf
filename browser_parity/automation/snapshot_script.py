"""In-page scripts used by the session: DOM snapshot walk, mutation counter, frame settle."""

SNAPSHOT_SCRIPT = """(interactiveOnly) => {
    const interactiveTags = new Set([
        'a', 'button', 'input', 'select', 'textarea', 'details', 'summary'
    ]);
    const interactiveRoles = new Set([
        'button', 'link', 'textbox', 'checkbox', 'radio', 'combobox',
        'listbox', 'menuitem', 'tab', 'switch', 'slider', 'option'
    ]);
    const contentTags = new Set([
        'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'img', 'label', 'li', 'p',
        'main', 'nav', 'header', 'footer', 'form', 'table', 'dialog'
    ]);

    // Structural mutation counter, one observer per document.
    if (!window.__parityMutations) {
        window.__parityMutations = { seq: 0 };
        new MutationObserver((records) => {
            for (const r of records) {
                if (r.type === 'childList') {
                    window.__parityMutations.seq += 1;
                    break;
                }
            }
        }).observe(document, { childList: true, subtree: true });
    }

    function roleOf(el) {
        if (el.getAttribute('role')) return el.getAttribute('role');
        const tag = el.tagName.toLowerCase();
        if (tag === 'a') return 'link';
        if (tag === 'button') return 'button';
        if (tag === 'input') {
            const t = el.type || 'text';
            if (t === 'checkbox') return 'checkbox';
            if (t === 'radio') return 'radio';
            if (t === 'submit' || t === 'button') return 'button';
            return 'textbox';
        }
        if (tag === 'select') return 'combobox';
        if (tag === 'textarea') return 'textbox';
        if (tag === 'img') return 'img';
        if (/^h[1-6]$/.test(tag)) return 'heading';
        return tag;
    }

    function nameOf(el) {
        const aria = el.getAttribute('aria-label');
        if (aria) return aria.trim();
        if (el.labels && el.labels.length) return (el.labels[0].textContent || '').trim();
        for (const attr of ['placeholder', 'alt', 'title', 'name']) {
            const v = el.getAttribute(attr);
            if (v) return v.trim();
        }
        return (el.textContent || '').replace(/\\s+/g, ' ').trim().substring(0, 80);
    }

    function isVisible(el) {
        const rect = el.getBoundingClientRect();
        if (rect.width === 0 || rect.height === 0) return false;
        const style = getComputedStyle(el);
        return style.visibility !== 'hidden' && style.display !== 'none';
    }

    const elements = [];
    const nodes = [];
    const root = document.body || document.documentElement;
    const walker = document.createTreeWalker(root, NodeFilter.SHOW_ELEMENT);
    for (let el = walker.currentNode; el; el = walker.nextNode()) {
        const tag = el.tagName.toLowerCase();
        const role = el.getAttribute('role') || '';
        const interactive = interactiveTags.has(tag) ||
            interactiveRoles.has(role) ||
            el.hasAttribute('onclick') ||
            el.getAttribute('tabindex') === '0' ||
            el.getAttribute('contenteditable') === 'true';
        if (!interactive && (interactiveOnly || !contentTags.has(tag))) continue;
        if (!isVisible(el)) continue;
        elements.push(el);
        nodes.push({ tag: tag, role: roleOf(el), name: nameOf(el), interactive: !!interactive });
    }
    return { elements: elements, nodes: nodes, mutationSeq: window.__parityMutations.seq };
}"""

MUTATION_SEQ_SCRIPT = "() => window.__parityMutations ? window.__parityMutations.seq : null"

SETTLE_SCRIPT = """() => new Promise((resolve) => {
    requestAnimationFrame(() => requestAnimationFrame(() => resolve(true)));
})"""
