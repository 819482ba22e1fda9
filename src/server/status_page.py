"""HTML status page: shows the connection state and the pairing QR code."""

from __future__ import annotations

STATUS_PAGE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>WhatsApp Webhook Bridge</title>
  <style>
    body { font-family: system-ui, sans-serif; background: #f4f6f8; margin: 0;
           min-height: 100vh; display: flex; justify-content: center; align-items: center; }
    .container { background: #fff; border-radius: 16px; padding: 40px; max-width: 480px;
                 width: 90%; text-align: center; box-shadow: 0 10px 30px rgba(0,0,0,.08); }
    h1 { color: #128C7E; margin: 0 0 8px; }
    .status { display: inline-block; padding: 10px 20px; border-radius: 24px;
              font-weight: bold; margin: 20px 0; }
    .connected { background: #d4edda; color: #155724; }
    .disconnected { background: #f8d7da; color: #721c24; }
    .qr-code { max-width: 300px; width: 100%; }
    .instructions { color: #555; line-height: 1.6; }
    button { background: #25D366; color: #fff; border: none; padding: 12px 28px;
             border-radius: 24px; cursor: pointer; margin-top: 16px; }
  </style>
</head>
<body>
  <div class="container">
    <h1>WhatsApp Webhook Bridge</h1>
    <p>Link your WhatsApp account to the automation webhook.</p>
    <div id="status-container"><p>Loading status...</p></div>
    <div id="qr-container" style="display: none;">
      <img id="qr-code" class="qr-code" alt="Pairing QR code" />
      <div class="instructions">
        <p><strong>Scan this QR code with WhatsApp:</strong></p>
        <p>1. Open WhatsApp on your phone</p>
        <p>2. Tap Menu &gt; Linked Devices</p>
        <p>3. Tap "Link a Device" and scan the code</p>
      </div>
    </div>
    <button onclick="checkStatus()">Refresh status</button>
  </div>
  <script>
    async function checkStatus() {
      const statusEl = document.getElementById('status-container');
      const qrEl = document.getElementById('qr-container');
      try {
        const data = await (await fetch('/qr-status')).json();
        if (data.connected) {
          statusEl.innerHTML = '<div class="status connected">WhatsApp connected</div>';
          qrEl.style.display = 'none';
        } else if (data.qr) {
          statusEl.innerHTML = '<div class="status disconnected">Scan the QR code to connect</div>';
          document.getElementById('qr-code').src = data.qr;
          qrEl.style.display = 'block';
        } else {
          statusEl.innerHTML = '<div class="status disconnected">Waiting for a QR code...</div>';
          qrEl.style.display = 'none';
        }
      } catch (err) {
        statusEl.innerHTML = '<div class="status disconnected">Cannot reach the bridge</div>';
      }
    }
    checkStatus();
    setInterval(checkStatus, 3000);
  </script>
</body>
</html>
"""
